"""
Learning application module: state that outlives a ranking call.

Provides AdaptiveLearning (running means per feature and query pattern),
SearchMonitor (effectiveness per query type, auto-tuned fusion weights)
and their YAML stores.
"""

from __future__ import annotations

from memory_rank.application.learning.adaptive_learning import AdaptiveLearning
from memory_rank.application.learning.search_monitor import (
    SearchMonitor,
    classify_query,
    effectiveness_from_signals,
)
from memory_rank.application.learning.store import MonitorStore, PatternStatsStore

__all__ = [
    "AdaptiveLearning",
    "MonitorStore",
    "PatternStatsStore",
    "SearchMonitor",
    "classify_query",
    "effectiveness_from_signals",
]
