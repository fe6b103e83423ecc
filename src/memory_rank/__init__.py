"""
memory-rank - Adaptive hybrid ranking for retrieved memories.

Fuses semantic and keyword candidate lists, re-weights them by age,
selects a diverse subset and trims it to a result/token budget, deciding
per query which expensive optional stages are worth running.

Example:
    from memory_rank import RankingContext, RankingPipeline, load_config

    pipeline = RankingPipeline(RankingContext.from_config(load_config()))
    result = pipeline.rank("gateway setup", {"semantic": semantic_hits})
    for item in result.items:
        print(item.id, item.score, item.provenance)
"""

__version__ = "0.1.0"

from memory_rank.application import (
    AdaptiveLearning,
    FusionStrategy,
    HeuristicReranker,
    PatternStatsStore,
    QueryAnalyzer,
    RankingConfig,
    RankingContext,
    RankingPipeline,
    SearchMonitor,
    analyze_query,
    load_config,
)
from memory_rank.core import (
    ConfigurationError,
    InputError,
    LearningStoreError,
    MemoryRankError,
    UpstreamError,
)
from memory_rank.domain import (
    CandidateItem,
    FeatureDecision,
    RankedItem,
    RankedList,
    RankingResult,
)

__all__ = [
    "__version__",
    "AdaptiveLearning",
    "CandidateItem",
    "ConfigurationError",
    "FeatureDecision",
    "FusionStrategy",
    "HeuristicReranker",
    "InputError",
    "LearningStoreError",
    "MemoryRankError",
    "PatternStatsStore",
    "QueryAnalyzer",
    "RankedItem",
    "RankedList",
    "RankingConfig",
    "RankingContext",
    "RankingPipeline",
    "RankingResult",
    "SearchMonitor",
    "UpstreamError",
    "analyze_query",
    "load_config",
]
