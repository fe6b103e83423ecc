"""
Query-level domain entities.

- QueryProfile: immutable analysis of one query string
- Feature / FeaturePolicy: the optional, costlier stages and how they are gated
- FeatureDecision: which optional stages a call enabled, and why
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class QueryComplexity(Enum):
    """
    Query complexity levels.

    SIMPLE: at most three significant tokens and no question phrasing
    MEDIUM: everything in between
    COMPLEX: long (more than eight tokens) or ambiguous queries
    """

    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class ExpectedRecall(Enum):
    """How many results a query is expected to need."""

    LOW = "low"  # Technical, specific queries
    MEDIUM = "medium"
    HIGH = "high"  # Vague queries that need broad coverage


@dataclass(frozen=True)
class QueryProfile:
    """Result of query analysis. Derived once per query string."""

    query: str
    tokens: tuple[str, ...]
    complexity: QueryComplexity
    ambiguity: float
    specificity: float
    domain_specificity: float
    expected_recall: ExpectedRecall
    has_interrogative: bool = False
    pattern: str = "*"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "query": self.query,
            "tokens": list(self.tokens),
            "complexity": self.complexity.value,
            "ambiguity": round(self.ambiguity, 3),
            "specificity": round(self.specificity, 3),
            "domain_specificity": round(self.domain_specificity, 3),
            "expected_recall": self.expected_recall.value,
            "has_interrogative": self.has_interrogative,
            "pattern": self.pattern,
        }


class Feature(Enum):
    """Optional ranking stages the adaptive controller can enable."""

    EXPANSION = "expansion"
    RERANK = "rerank"
    DECAY = "decay"


class FeaturePolicy(Enum):
    """Per-feature gating policy."""

    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


_FEATURE_FIELDS: dict[Feature, str] = {
    Feature.EXPANSION: "use_expansion",
    Feature.RERANK: "use_rerank",
    Feature.DECAY: "use_decay",
}


@dataclass(frozen=True)
class FeatureDecision:
    """Which optional stages one ranking call enabled, with justifications."""

    use_expansion: bool = False
    use_rerank: bool = False
    use_decay: bool = False
    reasons: tuple[str, ...] = field(default_factory=tuple)

    def enabled(self, feature: Feature) -> bool:
        return getattr(self, _FEATURE_FIELDS[feature])

    def features_used(self) -> list[str]:
        """Names of the enabled features, in a stable order."""
        return [f.value for f in Feature if self.enabled(f)]

    def with_reason(self, reason: str) -> FeatureDecision:
        return replace(self, reasons=(*self.reasons, reason))

    def with_override(self, feature: Feature, value: bool, reason: str) -> FeatureDecision:
        """Return a copy with ``feature`` set to ``value`` and the reason recorded."""
        return replace(self, **{_FEATURE_FIELDS[feature]: value}, reasons=(*self.reasons, reason))

    def to_dict(self) -> dict[str, Any]:
        return {
            "use_expansion": self.use_expansion,
            "use_rerank": self.use_rerank,
            "use_decay": self.use_decay,
            "features_used": self.features_used(),
            "reasons": list(self.reasons),
        }
