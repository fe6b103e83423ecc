"""
Pipeline application module: configuration and execution of ranking calls.

Provides RankingConfig (validated per-stage configuration, loaded once),
RankingPipeline (sync ``rank`` / async ``arank``) and RankingContext
(explicit collaborators: analyzer, learning, re-ranker, expander).
"""

from __future__ import annotations

# config must load before executor: search modules import it during executor import
from memory_rank.application.pipeline.config import (
    AdaptiveConfig,
    BudgetConfig,
    DecayConfig,
    DiversityConfig,
    FusionConfig,
    FusionStrategy,
    LearningConfig,
    LearningMode,
    RankingConfig,
    RerankConfig,
    SourceWeights,
    load_config,
)
from memory_rank.application.pipeline.executor import (
    PreparedRanking,
    RankingContext,
    RankingPipeline,
)

__all__ = [
    "AdaptiveConfig",
    "BudgetConfig",
    "DecayConfig",
    "DiversityConfig",
    "FusionConfig",
    "FusionStrategy",
    "LearningConfig",
    "LearningMode",
    "PreparedRanking",
    "RankingConfig",
    "RankingContext",
    "RankingPipeline",
    "RerankConfig",
    "SourceWeights",
    "load_config",
]
