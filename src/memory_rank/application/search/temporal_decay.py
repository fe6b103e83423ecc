"""
Temporal decay - memories lose relevance over time unless reinforced.

    decayed = max(score × e^(−λ × age_days), min_score)
    decayed = min_score                      if age_days > max_age_days

A separate recency boost multiplies very recent items after the floor and
cap, so a boosted fresh item may score above its original fused score.
λ = 0 turns decay off entirely (no floor, no cap).

With ``adaptive_rate`` on, each item may carry ``access_frequency`` (accesses
per day) and ``importance`` (0-1) metadata that slow its decay; λ from the
config is the base rate.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timezone

from memory_rank.application.pipeline.config import DecayConfig
from memory_rank.domain.entities import CandidateMetadata, FusedResult, sort_by_score

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = DecayConfig()
_SECONDS_PER_DAY = 86400.0
_PATH_DATE = re.compile(r"(\d{4}-\d{2}-\d{2})")

# Recency boost tiers: (max age in days, multiplier); the last tier ends at the window
_BOOST_TODAY = (1.0, 1.3)
_BOOST_RECENT = (3.0, 1.2)
_BOOST_WINDOW = 1.1

_FREQUENCY_KEYS = ("access_frequency", "accessFrequency")
_IMPORTANCE_KEYS = ("importance", "importanceScore", "importance_score")


def calculate_decayed_score(score: float, age_days: float, config: DecayConfig | None = None) -> float:
    """Exponential decay with floor and hard age cap."""
    config = config or _DEFAULT_CONFIG
    if config.decay_rate == 0:
        return score

    age_days = max(age_days, 0.0)
    if age_days > config.max_age_days:
        return config.min_score

    decayed = score * math.exp(-config.decay_rate * age_days)
    return max(decayed, config.min_score)


def calculate_recency_boost(age_days: float, config: DecayConfig | None = None) -> float:
    """Multiplier for very recent items (1.0 when disabled or outside the window)."""
    config = config or _DEFAULT_CONFIG
    if not config.recency_boost:
        return 1.0

    age_days = max(age_days, 0.0)
    if age_days <= _BOOST_TODAY[0]:
        return _BOOST_TODAY[1]
    if age_days <= _BOOST_RECENT[0]:
        return _BOOST_RECENT[1]
    if age_days <= config.recency_window_days:
        return _BOOST_WINDOW
    return 1.0


def resolve_age_days(metadata: CandidateMetadata, now: datetime | None = None) -> float:
    """
    Age of an item in days, never negative.

    Order: explicit ``age_days``, then ``timestamp`` relative to ``now``,
    then a YYYY-MM-DD date in a ``path`` metadata entry, else 0 (today).
    """
    if metadata.age_days is not None:
        return max(metadata.age_days, 0.0)

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if metadata.timestamp is not None:
        return max((now - metadata.timestamp).total_seconds() / _SECONDS_PER_DAY, 0.0)

    path = metadata.extra.get("path")
    if isinstance(path, str):
        match = _PATH_DATE.search(path)
        if match:
            try:
                dated = datetime.strptime(match.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except ValueError:
                logger.debug(f"Ignoring invalid date in path {path!r}")
            else:
                return max((now - dated).total_seconds() / _SECONDS_PER_DAY, 0.0)

    return 0.0


def apply_temporal_decay(
    results: Sequence[FusedResult],
    config: DecayConfig | None = None,
    *,
    decay: bool = True,
    boost: bool = True,
    now: datetime | None = None,
) -> list[FusedResult]:
    """
    Re-weight fused results by age.

    Args:
        results: Fused results
        config: Decay settings
        decay: Apply exponential decay with floor and cap
        boost: Apply the recency boost (also gated by ``config.recency_boost``)
        now: Reference time for timestamp ages (default: current UTC time)

    Returns:
        New results with ``age_days`` set, sorted by score desc, id asc
    """
    config = config or _DEFAULT_CONFIG
    now = now or datetime.now(timezone.utc)

    adjusted: list[FusedResult] = []
    for result in results:
        age = resolve_age_days(result.metadata, now)
        if decay:
            item_config = config
            if config.adaptive_rate:
                rate = resolve_decay_rate(result.metadata, config)
                if rate != config.decay_rate:
                    item_config = replace(config, decay_rate=rate)
            score = calculate_decayed_score(result.score, age, item_config)
        else:
            score = result.score
        if boost:
            score *= calculate_recency_boost(age, config)
        adjusted.append(result.with_score(score, age_days=age))

    return sort_by_score(adjusted)


def calculate_optimal_decay_rate(access_frequency: float, importance: float, base_rate: float = 0.1) -> float:
    """Slower decay for frequently accessed, important memories."""
    frequency_factor = max(0.5, 1 - access_frequency * 0.1)
    importance_factor = 1.5 - importance * 0.5
    return base_rate * frequency_factor * importance_factor


def _first_number(extra: dict, keys: tuple[str, ...]) -> float | None:
    for key in keys:
        value = extra.get(key)
        if isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return number
    return None


def resolve_decay_rate(metadata: CandidateMetadata, config: DecayConfig | None = None) -> float:
    """
    Per-item decay rate from access metadata.

    Items without ``access_frequency`` or ``importance`` keep the configured
    rate. Missing values count as no accesses and full importance, so only
    the values present change the rate.
    """
    config = config or _DEFAULT_CONFIG
    frequency = _first_number(metadata.extra, _FREQUENCY_KEYS)
    importance = _first_number(metadata.extra, _IMPORTANCE_KEYS)
    if frequency is None and importance is None:
        return config.decay_rate

    frequency = max(frequency if frequency is not None else 0.0, 0.0)
    importance = min(max(importance if importance is not None else 1.0, 0.0), 1.0)
    return calculate_optimal_decay_rate(frequency, importance, base_rate=config.decay_rate)


def calculate_freshness(
    age_days: float,
    access_count: int,
    importance: float,
    config: DecayConfig | None = None,
) -> float:
    """Freshness in [0, 1] combining age decay, access count and importance."""
    config = config or _DEFAULT_CONFIG
    decay_factor = math.exp(-config.decay_rate * max(age_days, 0.0))
    access_boost = min(access_count * 0.1, 0.5)
    importance_factor = 0.5 + importance * 0.5
    freshness = (decay_factor + access_boost) * importance_factor
    return min(max(freshness, 0.0), 1.0)
