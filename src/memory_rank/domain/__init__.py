"""
Domain Layer - Core ranking entities

Contains:
- entities: candidates, fused results, query profiles, feature decisions,
  learned pattern statistics, search monitor events and final results
"""

from .entities import (
    CandidateItem,
    CandidateMetadata,
    ExpectedRecall,
    Feature,
    FeatureDecision,
    FeaturePolicy,
    FusedResult,
    Provenance,
    QueryComplexity,
    QueryPatternStats,
    QueryProfile,
    QueryType,
    RankedItem,
    RankedList,
    RankingResult,
    SearchEvent,
    WeightState,
)

__all__ = [
    "CandidateItem",
    "CandidateMetadata",
    "RankedList",
    "FusedResult",
    "Provenance",
    "QueryProfile",
    "QueryComplexity",
    "ExpectedRecall",
    "Feature",
    "FeaturePolicy",
    "FeatureDecision",
    "QueryPatternStats",
    "QueryType",
    "SearchEvent",
    "WeightState",
    "RankedItem",
    "RankingResult",
]
