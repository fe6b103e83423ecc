"""
Confidence filter and output budgeter.

Last stage of a ranking call: drops low-confidence or wrong-type items, then
trims the ranked sequence to a result count and an approximate token budget.
Rank order is never changed and the budget walk never skips ahead.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from memory_rank.application.pipeline.config import BudgetConfig
from memory_rank.domain.entities import FusedResult

logger = logging.getLogger(__name__)

_CONFIDENCE_MARKER = re.compile(r"confidence:\s*([\d.]+)", re.IGNORECASE)
_TYPE_MARKER = re.compile(r"memory_type:\s*(\w+)", re.IGNORECASE)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def item_confidence(item: FusedResult, default: float = 0.5) -> float:
    """Metadata confidence, else a ``confidence: <n>`` snippet marker, else ``default``."""
    if item.metadata.confidence is not None:
        return item.metadata.confidence
    match = _CONFIDENCE_MARKER.search(item.snippet)
    if match:
        try:
            return min(max(float(match.group(1)), 0.0), 1.0)
        except ValueError:
            pass
    return default


def item_type(item: FusedResult) -> str | None:
    """Metadata memory type, else a ``memory_type: <name>`` snippet marker."""
    if item.metadata.memory_type:
        return item.metadata.memory_type
    match = _TYPE_MARKER.search(item.snippet)
    return match.group(1) if match else None


def filter_by_confidence(
    items: Iterable[FusedResult],
    min_confidence: float = 0.7,
    allowed_types: Iterable[str] | None = None,
    default_confidence: float = 0.5,
) -> list[FusedResult]:
    """
    Keep items at or above ``min_confidence`` (and of an allowed type, if set).

    Items without a type are dropped when a type filter is given.
    """
    allowed = frozenset(allowed_types) if allowed_types is not None else None
    kept: list[FusedResult] = []
    for item in items:
        if item_confidence(item, default_confidence) < min_confidence:
            continue
        if allowed is not None and item_type(item) not in allowed:
            continue
        kept.append(item)
    return kept


def trim_to_budget(
    items: Sequence[FusedResult],
    token_budget: int,
    max_memories: int,
) -> tuple[list[FusedResult], int]:
    """
    Take items in rank order until the count or token budget is exhausted.

    Stops at the first item that would exceed the budget; later, smaller
    items are not considered.

    Returns:
        (kept items, tokens used)
    """
    kept: list[FusedResult] = []
    total = 0
    for item in items:
        if len(kept) >= max_memories:
            break
        tokens = estimate_tokens(item.snippet)
        if total + tokens > token_budget:
            break
        total += tokens
        kept.append(item)
    return kept, total


@dataclass
class BudgetResult:
    """Outcome of filtering and trimming."""

    items: list[FusedResult] = field(default_factory=list)
    tokens_used: int = 0
    dropped_low_confidence: int = 0
    dropped_over_budget: int = 0

    def __len__(self) -> int:
        return len(self.items)


def apply_budget(items: Sequence[FusedResult], config: BudgetConfig | None = None) -> BudgetResult:
    """Confidence/type filter, then count and token trim."""
    config = config or BudgetConfig()
    filtered = filter_by_confidence(
        items,
        min_confidence=config.min_confidence,
        allowed_types=config.allowed_types,
        default_confidence=config.default_confidence,
    )
    kept, tokens = trim_to_budget(filtered, config.token_budget, config.max_memories)

    result = BudgetResult(
        items=kept,
        tokens_used=tokens,
        dropped_low_confidence=len(items) - len(filtered),
        dropped_over_budget=len(filtered) - len(kept),
    )
    logger.debug(
        "Budget: kept %d/%d items, %d tokens (filtered %d, trimmed %d)",
        len(kept),
        len(items),
        tokens,
        result.dropped_low_confidence,
        result.dropped_over_budget,
    )
    return result
