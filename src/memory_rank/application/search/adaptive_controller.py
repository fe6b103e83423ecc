"""
Adaptive feature selection.

Decides per query whether the expensive optional stages are worth running:

1. Fast path: cheap weighted fusion produces an initial result set
2. Detect weak results (too few, low average score) and query shape
3. Escalate: enable expansion / re-ranking / decay where they should help
4. Optionally fold in learned per-pattern advice (see application.learning)

``select_features`` is a pure function: same inputs, same decision, and
every decision carries its justification strings.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from memory_rank.application.pipeline.config import AdaptiveConfig, LearningMode
from memory_rank.application.search.query_analyzer import analyze_query
from memory_rank.domain.entities import (
    ExpectedRecall,
    Feature,
    FeatureDecision,
    FeaturePolicy,
    QueryComplexity,
    QueryProfile,
)

logger = logging.getLogger(__name__)

_FEATURE_LABELS: dict[Feature, str] = {
    Feature.EXPANSION: "Query expansion",
    Feature.RERANK: "Re-ranking",
    Feature.DECAY: "Temporal decay",
}


def _score_of(result: Any) -> float:
    if isinstance(result, (int, float)) and not isinstance(result, bool):
        return float(result)
    return float(getattr(result, "score", 0.0) or 0.0)


def _forced(feature: Feature, policy: FeaturePolicy) -> tuple[bool, str] | None:
    """Decision and reason for ALWAYS / NEVER, None for AUTO."""
    label = _FEATURE_LABELS[feature]
    if policy is FeaturePolicy.ALWAYS:
        return True, f"{label}: forced on"
    if policy is FeaturePolicy.NEVER:
        return False, f"{label}: forced off"
    return None


def select_features(
    query: str,
    profile: QueryProfile | None,
    initial_results: Sequence[Any],
    config: AdaptiveConfig | None = None,
) -> FeatureDecision:
    """
    Decide which optional stages to enable for one ranking call.

    Args:
        query: Raw query text (analyzed if ``profile`` is None)
        profile: Precomputed QueryProfile
        initial_results: Fast-path results (objects with ``score``, or floats)
        config: Escalation thresholds and per-feature policies

    Returns:
        FeatureDecision with one reason per feature
    """
    config = config or AdaptiveConfig()
    profile = profile or analyze_query(query)

    count = len(initial_results)
    avg_score = sum(_score_of(r) for r in initial_results) / count if count else 0.0
    reasons: list[str] = []

    # Query expansion
    forced = _forced(Feature.EXPANSION, config.expansion)
    if forced is not None:
        use_expansion, reason = forced
    elif count < config.min_results_for_escalation:
        use_expansion = True
        reason = f"Query expansion: enabled due to low results ({count} < {config.min_results_for_escalation})"
    elif avg_score < config.min_confidence_for_escalation:
        use_expansion = True
        reason = (
            f"Query expansion: enabled due to low average score "
            f"({avg_score:.2f} < {config.min_confidence_for_escalation})"
        )
    elif profile.expected_recall is ExpectedRecall.HIGH:
        use_expansion = True
        reason = "Query expansion: enabled for high-recall query"
    else:
        use_expansion = False
        reason = "Query expansion: skipped (sufficient results)"
    reasons.append(reason)

    # Re-ranking: only complex queries with enough results
    forced = _forced(Feature.RERANK, config.rerank)
    if forced is not None:
        use_rerank, reason = forced
    elif profile.complexity is QueryComplexity.COMPLEX and count >= config.min_rerank_results:
        use_rerank = True
        reason = "Re-ranking: enabled for complex query with sufficient results"
    else:
        use_rerank = False
        reason = "Re-ranking: skipped (simple query or few results)"
    reasons.append(reason)

    # Temporal decay: large result sets or medium-recall queries
    forced = _forced(Feature.DECAY, config.decay)
    if forced is not None:
        use_decay, reason = forced
    elif count > config.large_result_set:
        use_decay = True
        reason = f"Temporal decay: enabled for large result set ({count} > {config.large_result_set})"
    elif profile.expected_recall is ExpectedRecall.MEDIUM:
        use_decay = True
        reason = "Temporal decay: enabled for medium-recall query"
    else:
        use_decay = False
        reason = "Temporal decay: skipped (small result set)"
    reasons.append(reason)

    return FeatureDecision(
        use_expansion=use_expansion,
        use_rerank=use_rerank,
        use_decay=use_decay,
        reasons=tuple(reasons),
    )


def apply_learning_advice(
    decision: FeatureDecision,
    advice: Mapping[Feature, bool | None],
    mode: LearningMode,
    config: AdaptiveConfig | None = None,
) -> FeatureDecision:
    """
    Fold learned per-pattern advice into a rule-based decision.

    - OFF: advice is ignored
    - ADVISE: decided advice that disagrees is noted in the reasons only
    - OVERRIDE: decided advice that disagrees flips the feature, with a reason

    Features with an ALWAYS / NEVER policy are never overridden.
    Undecided advice (None) never changes anything.
    """
    if mode is LearningMode.OFF:
        return decision

    config = config or AdaptiveConfig()
    label_of = _FEATURE_LABELS

    for feature, advised in advice.items():
        if advised is None or advised == decision.enabled(feature):
            continue

        verdict = "helps" if advised else "does not help"
        if mode is LearningMode.OVERRIDE and config.policy_for(feature) is FeaturePolicy.AUTO:
            decision = decision.with_override(
                feature,
                advised,
                f"{label_of[feature]}: {'enabled' if advised else 'disabled'} by learning ({verdict} this pattern)",
            )
            logger.debug(f"Learning override: {feature.value} -> {advised}")
        else:
            decision = decision.with_reason(f"{label_of[feature]}: learning suggests it {verdict} this pattern")

    return decision
