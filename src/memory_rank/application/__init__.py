"""
Application Layer - Ranking Use Cases

Contains:
- pipeline: Configuration and the RankingPipeline orchestrator
- search: Individual ranking stages (analysis, fusion, decay, MMR, budget)
- learning: Per-pattern outcome statistics and the search monitor
"""

from .pipeline import (
    FusionStrategy,
    RankingConfig,
    RankingContext,
    RankingPipeline,
    load_config,
)
from .learning import AdaptiveLearning, MonitorStore, PatternStatsStore, SearchMonitor
from .search import HeuristicReranker, QueryAnalyzer, analyze_query

__all__ = [
    # Pipeline
    "FusionStrategy",
    "RankingConfig",
    "RankingContext",
    "RankingPipeline",
    "load_config",
    # Learning
    "AdaptiveLearning",
    "MonitorStore",
    "PatternStatsStore",
    "SearchMonitor",
    # Search
    "HeuristicReranker",
    "QueryAnalyzer",
    "analyze_query",
]
