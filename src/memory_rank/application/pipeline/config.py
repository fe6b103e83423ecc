"""
Ranking configuration: one validated, immutable structure per stage.

Every stage config validates itself in ``__post_init__`` and raises
ConfigurationError on bad values, so a RankingConfig that exists is valid.
Nothing is re-validated per call.

Loading:
    config = load_config("ranking.yaml")           # explicit file
    config = load_config()                          # $MEMORY_RANK_CONFIG or defaults
    config = RankingConfig.from_dict({"rrf_k": 30}) # flat or sectioned mapping

YAML accepts either flat option names (``semantic_weight``, ``rrf_k``, ...,
camelCase aliases such as ``semanticWeight`` included) or sections
(``fusion:``, ``decay:``, ``diversity:``, ``budget:``, ``adaptive:``,
``rerank:``, ``learning:``).
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import yaml

from memory_rank.core.exceptions import ConfigurationError, InvalidOptionError
from memory_rank.domain.entities import Feature, FeaturePolicy

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MEMORY_RANK_CONFIG"

E = TypeVar("E", bound=Enum)


class FusionStrategy(Enum):
    """How candidate lists are merged."""

    WEIGHTED = "weighted"  # Max-normalized weighted-linear fusion
    RRF = "rrf"  # Reciprocal Rank Fusion


class LearningMode(Enum):
    """How learned per-pattern advice interacts with the rule-based decision."""

    OFF = "off"  # Advice is not consulted
    ADVISE = "advise"  # Advice is recorded in the decision reasons only
    OVERRIDE = "override"  # Decided advice flips AUTO features


# =============================================================================
# Validation helpers
# =============================================================================


def _check_number(option: str, value: Any, *, minimum: float | None = None, maximum: float | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidOptionError(option, value, "a finite number")
    if minimum is not None and value < minimum:
        raise InvalidOptionError(option, value, f"a number >= {minimum}")
    if maximum is not None and value > maximum:
        raise InvalidOptionError(option, value, f"a number <= {maximum}")


def _check_int(option: str, value: Any, *, minimum: int = 0) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOptionError(option, value, "an integer")
    if value < minimum:
        raise InvalidOptionError(option, value, f"an integer >= {minimum}")


def _check_bool(option: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise InvalidOptionError(option, value, "true or false")


def _coerce_enum(option: str, enum_cls: type[E], value: Any) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise InvalidOptionError(option, value, f"one of: {choices}") from None


# =============================================================================
# Stage configs
# =============================================================================


@dataclass(frozen=True)
class SourceWeights:
    """
    One weighting abstraction for both fusion strategies.

    Maps a list's source tag to its weight; unknown tags use ``default``.
    """

    weights: dict[str, float] = field(default_factory=dict)
    default: float = 1.0

    def __post_init__(self) -> None:
        _check_number("weights.default", self.default, minimum=0.0)
        for source, weight in self.weights.items():
            _check_number(f"weights.{source}", weight, minimum=0.0)

    def weight_for(self, source: str) -> float:
        return self.weights.get(source, self.default)


@dataclass(frozen=True)
class FusionConfig:
    """Score fusion settings."""

    strategy: FusionStrategy = FusionStrategy.WEIGHTED
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    rrf_k: float = 60
    rrf_weights: dict[str, float] = field(default_factory=dict)
    boost_pinned: bool = True
    pinned_boost: float = 1.2
    # Scales snippet length in the keyword score divisor
    keyword_length_scale: float = 100.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy", _coerce_enum("fusion_strategy", FusionStrategy, self.strategy))
        _check_number("semantic_weight", self.semantic_weight, minimum=0.0)
        _check_number("keyword_weight", self.keyword_weight, minimum=0.0)
        _check_number("rrf_k", self.rrf_k, minimum=0.0)
        _check_bool("boost_pinned", self.boost_pinned)
        _check_number("pinned_boost", self.pinned_boost, minimum=1.0)
        _check_number("keyword_length_scale", self.keyword_length_scale, minimum=1e-9)
        if not isinstance(self.rrf_weights, dict):
            raise InvalidOptionError("rrf_weights", self.rrf_weights, "a mapping of source -> weight")
        for source, weight in self.rrf_weights.items():
            _check_number(f"rrf_weights.{source}", weight, minimum=0.0)

    def weights_for(self, strategy: FusionStrategy | None = None) -> SourceWeights:
        """Source weights for ``strategy`` (defaults to the configured one)."""
        strategy = strategy or self.strategy
        if strategy is FusionStrategy.RRF:
            return SourceWeights(dict(self.rrf_weights), default=1.0)
        return SourceWeights({"semantic": self.semantic_weight, "keyword": self.keyword_weight}, default=1.0)


@dataclass(frozen=True)
class DecayConfig:
    """Temporal decay and recency boost settings."""

    decay_rate: float = 0.1  # lambda per day
    max_age_days: float = 90.0  # Older items get min_score
    min_score: float = 0.1  # Floor after decay
    recency_boost: bool = True
    recency_window_days: float = 7.0
    # Per-item lambda from access_frequency / importance metadata
    adaptive_rate: bool = False

    def __post_init__(self) -> None:
        _check_number("decay_rate", self.decay_rate, minimum=0.0)
        _check_number("max_age_days", self.max_age_days, minimum=0.0)
        _check_number("min_score_floor", self.min_score, minimum=0.0)
        _check_bool("boost_recent", self.recency_boost)
        _check_number("recency_window_days", self.recency_window_days, minimum=0.0)
        _check_bool("adaptive_decay_rate", self.adaptive_rate)


@dataclass(frozen=True)
class DiversityConfig:
    """MMR diversity selection settings."""

    enabled: bool = True
    mmr_lambda: float = 0.5
    max_results: int = 10

    def __post_init__(self) -> None:
        _check_bool("diversity.enabled", self.enabled)
        _check_number("mmr_lambda", self.mmr_lambda, minimum=0.0, maximum=1.0)
        _check_int("max_results", self.max_results, minimum=1)


@dataclass(frozen=True)
class BudgetConfig:
    """Confidence filter and output budget settings."""

    min_confidence: float = 0.7
    default_confidence: float = 0.5
    max_memories: int = 10
    token_budget: int = 2000
    allowed_types: frozenset[str] | None = None

    def __post_init__(self) -> None:
        _check_number("min_confidence", self.min_confidence, minimum=0.0, maximum=1.0)
        _check_number("default_confidence", self.default_confidence, minimum=0.0, maximum=1.0)
        _check_int("max_memories", self.max_memories, minimum=0)
        _check_int("token_budget", self.token_budget, minimum=0)
        if self.allowed_types is not None:
            if isinstance(self.allowed_types, str) or not hasattr(self.allowed_types, "__iter__"):
                raise InvalidOptionError("allowed_types", self.allowed_types, "a list of type names")
            object.__setattr__(self, "allowed_types", frozenset(str(t) for t in self.allowed_types))


@dataclass(frozen=True)
class AdaptiveConfig:
    """Escalation thresholds and per-feature policies."""

    expansion: FeaturePolicy = FeaturePolicy.AUTO
    rerank: FeaturePolicy = FeaturePolicy.AUTO
    decay: FeaturePolicy = FeaturePolicy.AUTO
    min_results_for_escalation: int = 3
    min_confidence_for_escalation: float = 0.6
    min_rerank_results: int = 5
    large_result_set: int = 10
    learning_mode: LearningMode = LearningMode.ADVISE

    def __post_init__(self) -> None:
        for feature in Feature:
            value = getattr(self, feature.value)
            object.__setattr__(
                self, feature.value, _coerce_enum(f"per_feature_policy.{feature.value}", FeaturePolicy, value)
            )
        object.__setattr__(self, "learning_mode", _coerce_enum("learning_mode", LearningMode, self.learning_mode))
        _check_int("min_results_for_escalation", self.min_results_for_escalation)
        _check_number("min_confidence_for_escalation", self.min_confidence_for_escalation, minimum=0.0)
        _check_int("min_rerank_results", self.min_rerank_results)
        _check_int("large_result_set", self.large_result_set)

    def policy_for(self, feature: Feature) -> FeaturePolicy:
        return getattr(self, feature.value)


@dataclass(frozen=True)
class RerankConfig:
    """Secondary re-ranking boundary settings."""

    timeout_seconds: float = 2.0
    min_results: int = 4

    def __post_init__(self) -> None:
        _check_number("rerank_timeout_seconds", self.timeout_seconds, minimum=0.0)
        if self.timeout_seconds == 0:
            raise InvalidOptionError("rerank_timeout_seconds", self.timeout_seconds, "a number > 0")
        _check_int("rerank_min_results", self.min_results, minimum=1)


@dataclass(frozen=True)
class LearningConfig:
    """Per-pattern outcome learning settings."""

    data_dir: Path | None = None
    min_observations: int = 3
    margin: float = 0.1
    # Search monitor: per-query-type effectiveness drives weighted-fusion weights
    auto_tune_weights: bool = False
    max_events: int = 1000

    def __post_init__(self) -> None:
        if self.data_dir is not None and not isinstance(self.data_dir, Path):
            if not isinstance(self.data_dir, str) or not self.data_dir.strip():
                raise InvalidOptionError("learning_dir", self.data_dir, "a directory path")
            object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser())
        _check_int("min_observations", self.min_observations, minimum=1)
        _check_number("margin", self.margin, minimum=0.0)
        _check_bool("auto_tune_weights", self.auto_tune_weights)
        _check_int("monitor_max_events", self.max_events, minimum=1)


# =============================================================================
# Top-level config
# =============================================================================

_SECTIONS: dict[str, str] = {
    "fusion": "fusion",
    "decay": "decay",
    "temporal": "decay",
    "diversity": "diversity",
    "mmr": "diversity",
    "budget": "budget",
    "adaptive": "adaptive",
    "rerank": "rerank",
    "learning": "learning",
}

# Flat option name -> (section, field)
_FLAT_OPTIONS: dict[str, tuple[str, str]] = {
    "semantic_weight": ("fusion", "semantic_weight"),
    "keyword_weight": ("fusion", "keyword_weight"),
    "boost_pinned": ("fusion", "boost_pinned"),
    "pinned_boost": ("fusion", "pinned_boost"),
    "fusion_strategy": ("fusion", "strategy"),
    "rrf_k": ("fusion", "rrf_k"),
    "rrf_weights": ("fusion", "rrf_weights"),
    "keyword_length_scale": ("fusion", "keyword_length_scale"),
    "boost_recent": ("decay", "recency_boost"),
    "decay_rate": ("decay", "decay_rate"),
    "max_age_days": ("decay", "max_age_days"),
    "min_score_floor": ("decay", "min_score"),
    "recency_window_days": ("decay", "recency_window_days"),
    "adaptive_decay_rate": ("decay", "adaptive_rate"),
    "mmr_lambda": ("diversity", "mmr_lambda"),
    "max_results": ("diversity", "max_results"),
    "min_confidence": ("budget", "min_confidence"),
    "default_confidence": ("budget", "default_confidence"),
    "max_memories": ("budget", "max_memories"),
    "token_budget": ("budget", "token_budget"),
    "allowed_types": ("budget", "allowed_types"),
    "min_results_for_escalation": ("adaptive", "min_results_for_escalation"),
    "min_confidence_for_escalation": ("adaptive", "min_confidence_for_escalation"),
    "min_rerank_results": ("adaptive", "min_rerank_results"),
    "learning_mode": ("adaptive", "learning_mode"),
    "rerank_timeout_seconds": ("rerank", "timeout_seconds"),
    "rerank_min_results": ("rerank", "min_results"),
    "learning_dir": ("learning", "data_dir"),
    "auto_tune_weights": ("learning", "auto_tune_weights"),
    "monitor_max_events": ("learning", "max_events"),
}

# Section-level aliases that differ from the dataclass field name
_SECTION_ALIASES: dict[str, dict[str, str]] = {
    "fusion": {"fusion_strategy": "strategy"},
    "decay": {"boost_recent": "recency_boost", "min_score_floor": "min_score", "adaptive_decay_rate": "adaptive_rate"},
    "rerank": {"timeout": "timeout_seconds"},
    "learning": {"dir": "data_dir", "learning_dir": "data_dir", "monitor_max_events": "max_events"},
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


@dataclass(frozen=True)
class RankingConfig:
    """
    Complete pipeline configuration.

    Presets:
    - default(): weighted fusion, adaptive features on AUTO
    - rrf(): rank-based fusion
    """

    fusion: FusionConfig = field(default_factory=FusionConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)
    diversity: DiversityConfig = field(default_factory=DiversityConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    rerank: RerankConfig = field(default_factory=RerankConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)

    @classmethod
    def default(cls) -> RankingConfig:
        return cls()

    @classmethod
    def rrf(cls, k: float = 60) -> RankingConfig:
        return cls(fusion=FusionConfig(strategy=FusionStrategy.RRF, rrf_k=k))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RankingConfig:
        """
        Build a config from a flat or sectioned mapping.

        Raises:
            ConfigurationError: unknown option or invalid value
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")

        sections: dict[str, dict[str, Any]] = {name: {} for name in set(_SECTIONS.values())}

        for raw_key, value in data.items():
            key = _snake(str(raw_key))
            if key in _SECTIONS and isinstance(value, dict):
                section = _SECTIONS[key]
                aliases = _SECTION_ALIASES.get(section, {})
                for sub_key, sub_value in value.items():
                    name = _snake(str(sub_key))
                    sections[section][aliases.get(name, name)] = sub_value
            elif key == "per_feature_policy":
                if not isinstance(value, dict):
                    raise InvalidOptionError("per_feature_policy", value, "a mapping of feature -> policy")
                for feature_name, policy in value.items():
                    sections["adaptive"][_snake(str(feature_name))] = policy
            elif key in _FLAT_OPTIONS:
                section, field_name = _FLAT_OPTIONS[key]
                sections[section][field_name] = value
            else:
                raise ConfigurationError(f"Unknown configuration option: {raw_key!r}", option=str(raw_key))

        section_types = {f.name: f.default_factory for f in fields(cls)}
        built: dict[str, Any] = {}
        for name, values in sections.items():
            stage_cls = section_types[name]
            known = {f.name for f in fields(stage_cls)}
            unknown = set(values) - known
            if unknown:
                bad = sorted(unknown)[0]
                raise ConfigurationError(f"Unknown option {bad!r} in section {name!r}", option=f"{name}.{bad}")
            try:
                built[name] = stage_cls(**values)
            except TypeError as e:
                raise ConfigurationError(f"Invalid {name} configuration: {e}") from e

        return cls(**built)

    @classmethod
    def from_yaml(cls, path: str | Path) -> RankingConfig:
        """Load and validate a YAML configuration file."""
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}") from None
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        logger.info("Loaded ranking configuration from %s", path)
        return cls.from_dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        """Sectioned, YAML-serializable view of the configuration."""
        return {
            "fusion": {
                "strategy": self.fusion.strategy.value,
                "semantic_weight": self.fusion.semantic_weight,
                "keyword_weight": self.fusion.keyword_weight,
                "rrf_k": self.fusion.rrf_k,
                "rrf_weights": dict(self.fusion.rrf_weights),
                "boost_pinned": self.fusion.boost_pinned,
                "pinned_boost": self.fusion.pinned_boost,
                "keyword_length_scale": self.fusion.keyword_length_scale,
            },
            "decay": {
                "decay_rate": self.decay.decay_rate,
                "max_age_days": self.decay.max_age_days,
                "min_score": self.decay.min_score,
                "recency_boost": self.decay.recency_boost,
                "recency_window_days": self.decay.recency_window_days,
                "adaptive_rate": self.decay.adaptive_rate,
            },
            "diversity": {
                "enabled": self.diversity.enabled,
                "mmr_lambda": self.diversity.mmr_lambda,
                "max_results": self.diversity.max_results,
            },
            "budget": {
                "min_confidence": self.budget.min_confidence,
                "default_confidence": self.budget.default_confidence,
                "max_memories": self.budget.max_memories,
                "token_budget": self.budget.token_budget,
                "allowed_types": sorted(self.budget.allowed_types) if self.budget.allowed_types else None,
            },
            "adaptive": {
                "expansion": self.adaptive.expansion.value,
                "rerank": self.adaptive.rerank.value,
                "decay": self.adaptive.decay.value,
                "min_results_for_escalation": self.adaptive.min_results_for_escalation,
                "min_confidence_for_escalation": self.adaptive.min_confidence_for_escalation,
                "min_rerank_results": self.adaptive.min_rerank_results,
                "large_result_set": self.adaptive.large_result_set,
                "learning_mode": self.adaptive.learning_mode.value,
            },
            "rerank": {
                "timeout_seconds": self.rerank.timeout_seconds,
                "min_results": self.rerank.min_results,
            },
            "learning": {
                "data_dir": str(self.learning.data_dir) if self.learning.data_dir else None,
                "min_observations": self.learning.min_observations,
                "margin": self.learning.margin,
                "auto_tune_weights": self.learning.auto_tune_weights,
                "max_events": self.learning.max_events,
            },
        }


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> RankingConfig:
    """
    Load the ranking configuration once, at startup.

    Resolution order: explicit ``path``, then ``$MEMORY_RANK_CONFIG``, then
    built-in defaults. ``overrides`` (flat or sectioned) are merged on top of
    the file contents before validation.

    Raises:
        ConfigurationError: unreadable file, unknown option or invalid value
    """
    path = path or os.environ.get(CONFIG_ENV_VAR, "").strip() or None

    data: dict[str, Any] = {}
    if path:
        file_config = RankingConfig.from_yaml(path)
        data = file_config.to_dict()

    if overrides:
        data = _merge(data, overrides)

    return RankingConfig.from_dict(data)


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge ``overrides`` onto a sectioned ``base`` (flat override keys are placed in their section)."""
    merged = {section: dict(values) for section, values in base.items()}
    for raw_key, value in overrides.items():
        key = _snake(str(raw_key))
        if key in _SECTIONS and isinstance(value, dict):
            section = _SECTIONS[key]
            aliases = _SECTION_ALIASES.get(section, {})
            target = merged.setdefault(section, {})
            for sub_key, sub_value in value.items():
                name = _snake(str(sub_key))
                target[aliases.get(name, name)] = sub_value
        elif key in _FLAT_OPTIONS:
            section, field_name = _FLAT_OPTIONS[key]
            merged.setdefault(section, {})[field_name] = value
        elif key == "per_feature_policy" and isinstance(value, dict):
            target = merged.setdefault("adaptive", {})
            for feature_name, policy in value.items():
                target[_snake(str(feature_name))] = policy
        else:
            raise ConfigurationError(f"Unknown configuration option: {raw_key!r}", option=str(raw_key))
    return merged
