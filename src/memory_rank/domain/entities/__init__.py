"""
Domain Entities

Core objects flowing through one ranking call.
"""

from __future__ import annotations

from .candidate import (
    PINNED_MARKER,
    CandidateItem,
    CandidateMetadata,
    FusedResult,
    Provenance,
    RankedList,
    sort_by_score,
)
from .learning import QueryPatternStats
from .monitor import QueryType, SearchEvent, WeightState
from .query import (
    ExpectedRecall,
    Feature,
    FeatureDecision,
    FeaturePolicy,
    QueryComplexity,
    QueryProfile,
)
from .result import RankedItem, RankingResult

__all__ = [
    # Candidate entities
    "PINNED_MARKER",
    "CandidateItem",
    "CandidateMetadata",
    "RankedList",
    "FusedResult",
    "Provenance",
    "sort_by_score",
    # Query entities
    "QueryProfile",
    "QueryComplexity",
    "ExpectedRecall",
    "Feature",
    "FeaturePolicy",
    "FeatureDecision",
    # Learning
    "QueryPatternStats",
    # Monitor
    "QueryType",
    "SearchEvent",
    "WeightState",
    # Results
    "RankedItem",
    "RankingResult",
]
