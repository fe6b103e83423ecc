"""
Adaptive learning: which query patterns benefit from which optional feature.

Without relevance labels, the only signal is the outcome quality the caller
reports after using a ranking result. For every (feature, query pattern)
pair we keep two running means: quality when the feature was used and when
it was not. Once a pattern has enough observations, the feature is advised
if it beats the baseline by a margin.

    learning = AdaptiveLearning(PatternStatsStore("~/.memory-rank/learning"))
    learning.load()
    learning.record_outcome("gateway setup", used_feature=True, quality=0.9)
    learning.should_use_feature("gateway setup")  # None until 3 observations

Concurrency: updates are serialized by a lock (single writer); readers get
copies, never the live records.
"""

from __future__ import annotations

import copy
import logging
import math
import threading
from typing import Any

from memory_rank.application.learning.store import PatternStatsStore
from memory_rank.core.exceptions import ErrorContext, InputError, LearningStoreError
from memory_rank.domain.entities import Feature, QueryPatternStats

logger = logging.getLogger(__name__)


class AdaptiveLearning:
    """Per-pattern outcome statistics with an optional persistent store.

    Args:
        store: Where statistics are persisted (None keeps them in memory only)
        min_observations: Outcomes needed before advice is given
        margin: Quality gain the feature must show over the baseline
    """

    def __init__(
        self,
        store: PatternStatsStore | None = None,
        *,
        min_observations: int = 3,
        margin: float = 0.1,
    ) -> None:
        self._store = store
        self._min_observations = min_observations
        self._margin = margin
        self._stats: dict[Feature, dict[str, QueryPatternStats]] = {feature: {} for feature in Feature}
        self._lock = threading.Lock()

    @property
    def store(self) -> PatternStatsStore | None:
        return self._store

    def load(self) -> int:
        """Load persisted statistics; a corrupt store resets learning to empty.

        Returns:
            Number of pattern records loaded
        """
        if self._store is None:
            return 0

        loaded: dict[Feature, dict[str, QueryPatternStats]] = {}
        for feature in Feature:
            try:
                loaded[feature] = self._store.load(feature)
            except LearningStoreError as e:
                logger.warning("Learning store unreadable, starting %s statistics fresh: %s", feature.value, e)
                loaded[feature] = {}

        with self._lock:
            self._stats = loaded
        total = sum(len(records) for records in loaded.values())
        logger.info("Loaded %d learning records from %s", total, self._store.data_dir)
        return total

    def record_outcome(
        self,
        pattern: str,
        used_feature: bool,
        quality: float,
        feature: Feature = Feature.EXPANSION,
    ) -> QueryPatternStats:
        """Fold one reported outcome into the pattern's running means.

        ``quality`` is clipped to [0, 1]. Persist failures are logged, not raised.

        Raises:
            InputError: ``quality`` is NaN or infinite

        Returns:
            Copy of the updated statistics
        """
        quality = float(quality)
        if not math.isfinite(quality):
            raise InputError(
                f"Outcome quality must be a finite number, got {quality!r}",
                context=ErrorContext(
                    operation="record_outcome",
                    input_value=quality,
                    suggestion="Report quality as a number in [0, 1]",
                ),
            )
        quality = min(max(quality, 0.0), 1.0)

        with self._lock:
            records = self._stats[feature]
            stats = records.get(pattern)
            if stats is None:
                stats = QueryPatternStats(pattern=pattern, feature=feature.value)
                records[pattern] = stats
            stats.record(used_feature, quality)
            result = copy.copy(stats)

            if self._store is not None:
                try:
                    self._store.save(feature, records)
                except LearningStoreError as e:
                    logger.warning("Failed to persist %s learning statistics: %s", feature.value, e)

        logger.debug(
            "Outcome for %r (%s used=%s): quality %.2f, %d observations",
            pattern,
            feature.value,
            used_feature,
            quality,
            result.total,
        )
        return result

    def should_use_feature(self, pattern: str, feature: Feature = Feature.EXPANSION) -> bool | None:
        """Advice for one pattern: None until enough observations, else whether the feature helps."""
        with self._lock:
            stats = self._stats[feature].get(pattern)
            if stats is None or stats.total < self._min_observations:
                return None
            return stats.mean_with > stats.mean_without + self._margin

    def advice_for(self, pattern: str) -> dict[Feature, bool | None]:
        """Advice for every feature."""
        return {feature: self.should_use_feature(pattern, feature) for feature in Feature}

    def snapshot(self, feature: Feature = Feature.EXPANSION) -> dict[str, QueryPatternStats]:
        """Copy of one feature's statistics for inspection."""
        with self._lock:
            return {pattern: copy.copy(stats) for pattern, stats in self._stats[feature].items()}

    def get_stats(self, feature: Feature = Feature.EXPANSION) -> dict[str, Any]:
        """Summary counts for one feature."""
        with self._lock:
            records = list(self._stats[feature].values())

        with_data = [s for s in records if s.total >= self._min_observations]
        return {
            "feature": feature.value,
            "total_patterns": len(records),
            "patterns_with_data": len(with_data),
            "feature_helpful": sum(1 for s in with_data if s.mean_with > s.mean_without),
        }
