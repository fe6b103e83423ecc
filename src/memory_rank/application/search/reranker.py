"""
Secondary re-ranking.

A re-ranker takes the query and the already-ranked items and returns their
ids in a new order. It is the one optional stage that may call out of
process, so the pipeline always runs it through the async timeout boundary
(core.async_utils.bounded_call) and falls back to the prior order on
timeout, failure or cancellation.

Implementations:
- HeuristicReranker: local term/recency/confidence boosts, no I/O
- LLMRerankClient (infrastructure.rerank): Ollama-compatible HTTP endpoint
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from memory_rank.domain.entities import FusedResult

logger = logging.getLogger(__name__)


@runtime_checkable
class Reranker(Protocol):
    """Anything that can reorder ranked items for a query."""

    async def rerank(self, query: str, items: Sequence[FusedResult]) -> list[str]:
        """Return item ids, most relevant first."""
        ...


def apply_rerank_order(items: Sequence[FusedResult], ids: Sequence[str]) -> list[FusedResult]:
    """
    Reorder ``items`` by ``ids``.

    Unknown and repeated ids are ignored; items the re-ranker did not mention
    keep their prior relative order after the mentioned ones.
    """
    by_id = {item.id: item for item in items}
    ordered: list[FusedResult] = []
    placed: set[str] = set()

    for item_id in ids:
        item = by_id.get(item_id)
        if item is None or item_id in placed:
            continue
        ordered.append(item)
        placed.add(item_id)

    ordered.extend(item for item in items if item.id not in placed)
    return ordered


class HeuristicReranker:
    """
    Local re-ranking without a model.

    boosted = score
            + 0.2 per query word (> 3 chars) found in the snippet
            + 0.1 if younger than 7 days, another 0.2 if younger than 1 day
            + 0.1 × confidence
    """

    TERM_BOOST = 0.2
    RECENT_DAYS = 7.0
    RECENT_BOOST = 0.1
    FRESH_DAYS = 1.0
    FRESH_BOOST = 0.2
    CONFIDENCE_WEIGHT = 0.1
    MIN_WORD_LENGTH = 4

    def __init__(self, now: datetime | None = None):
        self._now = now

    def _age_days(self, item: FusedResult) -> float | None:
        if item.age_days is not None:
            return item.age_days
        if item.metadata.age_days is not None:
            return item.metadata.age_days
        if item.metadata.timestamp is not None:
            now = self._now or datetime.now(timezone.utc)
            return (now - item.metadata.timestamp).total_seconds() / 86400.0
        return None

    def boosted_score(self, query_words: Sequence[str], item: FusedResult) -> float:
        score = item.score
        text = item.snippet.lower()

        for word in query_words:
            if len(word) >= self.MIN_WORD_LENGTH and word in text:
                score += self.TERM_BOOST

        age = self._age_days(item)
        if age is not None:
            if age < self.RECENT_DAYS:
                score += self.RECENT_BOOST
            if age < self.FRESH_DAYS:
                score += self.FRESH_BOOST

        if item.metadata.confidence:
            score += item.metadata.confidence * self.CONFIDENCE_WEIGHT

        return score

    async def rerank(self, query: str, items: Sequence[FusedResult]) -> list[str]:
        query_words = query.lower().split()
        scored = [(self.boosted_score(query_words, item), index, item.id) for index, item in enumerate(items)]
        # Stable: equal boosted scores keep their prior order
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        return [item_id for _, _, item_id in scored]
