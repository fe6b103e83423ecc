"""
Search effectiveness monitor: auto-tunes fusion weights per query type.

Every weighted-fusion ranking call is recorded as a SearchEvent carrying the
weights it used. When the caller reports back, with an explicit quality or
with success signals, the event gets an effectiveness score in [0, 1].

Tuning runs after each scored event once 20 are available, over the last 50:
- average effectiveness above 0.7: weights stay
- technical queries below 0.5: keyword weight +0.05 (at most 0.5)
- vague queries below 0.5: semantic weight +0.05 (at most 0.8)
- average below 0.4 and no rule above fired: 0.6 / 0.4
Changes of 0.02 or less are ignored.

``optimal_weights(query)`` prefers the mean weights of the query type's
successful calls (effectiveness above 0.7) once that type has 10 scored
events averaging above 0.6, and the tuned weights otherwise.

    monitor = SearchMonitor(MonitorStore("~/.memory-rank/learning"))
    monitor.load()
    search_id = monitor.record_search("api gateway config", 5, 0.8, monitor.optimal_weights("api gateway config"))
    monitor.record_success(search_id, clicked_result=True)
"""

from __future__ import annotations

import logging
import math
import re
import threading
import uuid
from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from memory_rank.application.learning.store import MonitorStore
from memory_rank.application.pipeline.config import SourceWeights
from memory_rank.core.exceptions import ErrorContext, InputError, LearningStoreError
from memory_rank.domain.entities import QueryType, SearchEvent, WeightState

logger = logging.getLogger(__name__)

_TECHNICAL = re.compile(
    r"\b(api|config|database|server|endpoint|function|class|method|error|bug|fix)\b", re.IGNORECASE
)
_EXPLORATORY = re.compile(r"\b(explore|find|discover|learn about|research)\b", re.IGNORECASE)
_VAGUE = re.compile(r"\b(thing|stuff|something|anything|it|that|this)\b", re.IGNORECASE)
_QUESTION = re.compile(r"\b(how|what|why|when|where|who|which)\b", re.IGNORECASE)

# Tuning thresholds
MIN_SCORED_FOR_TUNING = 20
TUNING_WINDOW = 50
GOOD_EFFECTIVENESS = 0.7
POOR_TYPE_EFFECTIVENESS = 0.5
POOR_OVERALL_EFFECTIVENESS = 0.4
WEIGHT_STEP = 0.05
MAX_KEYWORD_WEIGHT = 0.5
MAX_SEMANTIC_WEIGHT = 0.8
MIN_WEIGHT_CHANGE = 0.02

# Per-type weights
TYPE_WINDOW = 100
MIN_TYPE_EVENTS = 10
MIN_TYPE_EFFECTIVENESS = 0.6
SUCCESS_EFFECTIVENESS = 0.7


def classify_query(query: str) -> QueryType:
    """Technical beats exploratory beats vague beats factual; exploratory otherwise."""
    if _TECHNICAL.search(query):
        return QueryType.TECHNICAL
    if _EXPLORATORY.search(query):
        return QueryType.EXPLORATORY
    if _VAGUE.search(query):
        return QueryType.VAGUE
    if _QUESTION.search(query):
        return QueryType.FACTUAL
    return QueryType.EXPLORATORY


def effectiveness_from_signals(
    *,
    clicked_result: bool = False,
    follow_up_query: str | None = None,
    session_extended: bool = False,
    context_used: bool = False,
) -> float:
    """Neutral 0.5 moved by success signals; a follow-up query counts against."""
    score = 0.5
    if clicked_result:
        score += 0.2
    if context_used:
        score += 0.3
    if session_extended:
        score += 0.15
    score += -0.1 if follow_up_query else 0.15
    return min(max(score, 0.0), 1.0)


def _by_type(events: Sequence[SearchEvent]) -> dict[QueryType, tuple[int, float]]:
    """Scored event count and mean effectiveness per query type."""
    totals: dict[QueryType, list[float]] = {}
    for event in events:
        totals.setdefault(event.query_type, []).append(event.effectiveness or 0.0)
    return {query_type: (len(values), sum(values) / len(values)) for query_type, values in totals.items()}


def _mean_weights(events: Sequence[SearchEvent]) -> tuple[float, float]:
    return (
        sum(e.semantic_weight for e in events) / len(events),
        sum(e.keyword_weight for e in events) / len(events),
    )


class SearchMonitor:
    """Tracks ranking calls and their reported effectiveness.

    Args:
        store: Where weights and events are persisted (None keeps them in memory only)
        max_events: Most recent events kept
        save_every: Unscored events recorded between saves
        default_semantic: Starting semantic weight
        default_keyword: Starting keyword weight
    """

    def __init__(
        self,
        store: MonitorStore | None = None,
        *,
        max_events: int = 1000,
        save_every: int = 10,
        default_semantic: float = 0.7,
        default_keyword: float = 0.3,
    ) -> None:
        self._store = store
        self._max_events = max_events
        self._save_every = save_every
        self._default = WeightState(semantic=default_semantic, keyword=default_keyword)
        self._weights = replace(self._default)
        self._events: list[SearchEvent] = []
        self._unsaved = 0
        self._lock = threading.Lock()

    @property
    def store(self) -> MonitorStore | None:
        return self._store

    def load(self) -> int:
        """Load persisted weights and events; a corrupt store starts fresh.

        Returns:
            Number of events loaded
        """
        if self._store is None:
            return 0
        try:
            weights, events = self._store.load()
        except LearningStoreError as e:
            logger.warning("Search monitor store unreadable, starting fresh: %s", e)
            weights, events = None, []

        with self._lock:
            self._weights = weights or replace(self._default)
            self._events = events[-self._max_events :]
            self._unsaved = 0
        logger.info("Loaded %d search events from %s", len(events), self._store.path)
        return len(events)

    # ── Recording ────────────────────────────────────────────────────────

    def record_search(self, query: str, results_count: int, avg_score: float, weights: SourceWeights) -> str:
        """Record one ranking call and the fusion weights it used.

        Returns:
            Event id for the later effectiveness report
        """
        event = SearchEvent(
            id=f"search-{uuid.uuid4().hex[:12]}",
            query=query,
            query_type=classify_query(query),
            results_count=results_count,
            avg_score=avg_score,
            semantic_weight=weights.weight_for("semantic"),
            keyword_weight=weights.weight_for("keyword"),
        )
        with self._lock:
            self._events.append(event)
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]
            self._unsaved += 1
            if self._unsaved >= self._save_every:
                self._save_locked()
        return event.id

    def record_effectiveness(self, search_id: str, effectiveness: float) -> bool:
        """Score a recorded call directly (clipped to [0, 1]).

        Returns:
            False when ``search_id`` is unknown (e.g. trimmed away)

        Raises:
            InputError: ``effectiveness`` is NaN or infinite
        """
        return self._score(search_id, effectiveness, {})

    def record_success(
        self,
        search_id: str,
        *,
        clicked_result: bool = False,
        follow_up_query: str | None = None,
        session_extended: bool = False,
        context_used: bool = False,
    ) -> float | None:
        """Score a recorded call from success signals.

        Returns:
            The effectiveness score, or None when ``search_id`` is unknown
        """
        score = effectiveness_from_signals(
            clicked_result=clicked_result,
            follow_up_query=follow_up_query,
            session_extended=session_extended,
            context_used=context_used,
        )
        signals = {
            "clicked_result": clicked_result,
            "follow_up_query": follow_up_query,
            "session_extended": session_extended,
            "context_used": context_used,
        }
        return score if self._score(search_id, score, signals) else None

    def _score(self, search_id: str, effectiveness: float, signals: dict[str, Any]) -> bool:
        effectiveness = float(effectiveness)
        if not math.isfinite(effectiveness):
            raise InputError(
                f"Search effectiveness must be a finite number, got {effectiveness!r}",
                context=ErrorContext(
                    operation="record_effectiveness",
                    input_value=effectiveness,
                    suggestion="Report effectiveness as a number in [0, 1]",
                ),
            )

        with self._lock:
            event = next((e for e in reversed(self._events) if e.id == search_id), None)
            if event is None:
                logger.debug("Unknown search id %r, effectiveness ignored", search_id)
                return False
            for name, value in signals.items():
                setattr(event, name, value)
            event.effectiveness = min(max(effectiveness, 0.0), 1.0)
            self._tune_locked()
            self._save_locked()
        return True

    # ── Tuning ───────────────────────────────────────────────────────────

    def _tune_locked(self) -> bool:
        scored = [e for e in self._events if e.scored]
        if len(scored) < MIN_SCORED_FOR_TUNING:
            return False

        recent = scored[-TUNING_WINDOW:]
        average = sum(e.effectiveness or 0.0 for e in recent) / len(recent)
        if average > GOOD_EFFECTIVENESS:
            return False

        by_type = _by_type(recent)
        semantic, keyword = self._weights.semantic, self._weights.keyword
        reason = ""

        technical = by_type.get(QueryType.TECHNICAL)
        if technical and technical[1] < POOR_TYPE_EFFECTIVENESS:
            keyword = min(MAX_KEYWORD_WEIGHT, keyword + WEIGHT_STEP)
            semantic = 1.0 - keyword
            reason = "technical queries underperforming"

        vague = by_type.get(QueryType.VAGUE)
        if vague and vague[1] < POOR_TYPE_EFFECTIVENESS:
            semantic = min(MAX_SEMANTIC_WEIGHT, semantic + WEIGHT_STEP)
            keyword = 1.0 - semantic
            reason = "vague queries underperforming"

        if average < POOR_OVERALL_EFFECTIVENESS and not reason:
            semantic, keyword = 0.6, 0.4
            reason = "overall poor performance"

        if not reason or abs(semantic - self._weights.semantic) <= MIN_WEIGHT_CHANGE:
            return False

        self._weights = WeightState(semantic=round(semantic, 4), keyword=round(keyword, 4), reason=reason)
        logger.info(
            "Auto-tuned fusion weights: semantic=%.2f keyword=%.2f (%s)",
            self._weights.semantic,
            self._weights.keyword,
            reason,
        )
        return True

    # ── Queries ──────────────────────────────────────────────────────────

    def optimal_weights(self, query: str) -> SourceWeights:
        """Fusion weights for ``query``: its type's successful weights, else the tuned ones."""
        query_type = classify_query(query)
        with self._lock:
            scored = [e for e in self._events if e.scored]
            stats = _by_type(scored[-TYPE_WINDOW:]).get(query_type)
            if stats and stats[0] >= MIN_TYPE_EVENTS and stats[1] > MIN_TYPE_EFFECTIVENESS:
                winners = [
                    e
                    for e in scored
                    if e.query_type is query_type and (e.effectiveness or 0.0) > SUCCESS_EFFECTIVENESS
                ]
                if winners:
                    semantic, keyword = _mean_weights(winners)
                    return SourceWeights({"semantic": round(semantic, 2), "keyword": round(keyword, 2)})
            return SourceWeights({"semantic": self._weights.semantic, "keyword": self._weights.keyword})

    def current_weights(self) -> WeightState:
        with self._lock:
            return replace(self._weights)

    def get_metrics(self) -> dict[str, Any]:
        """Effectiveness overall and per query type, with each type's best weights."""
        with self._lock:
            events = list(self._events)
            weights = self._weights.to_dict()

        scored = [e for e in events if e.scored]
        by_type: dict[str, Any] = {}
        for query_type, (count, average) in _by_type(scored).items():
            winners = [
                e for e in scored if e.query_type is query_type and (e.effectiveness or 0.0) > SUCCESS_EFFECTIVENESS
            ]
            semantic, keyword = (
                _mean_weights(winners) if winners else (self._default.semantic, self._default.keyword)
            )
            by_type[query_type.value] = {
                "count": count,
                "avg_effectiveness": average,
                "optimal_weights": {"semantic": semantic, "keyword": keyword},
            }

        return {
            "total_searches": len(events),
            "scored_searches": len(scored),
            "avg_effectiveness": sum(e.effectiveness or 0.0 for e in scored) / len(scored) if scored else 0.0,
            "current_weights": weights,
            "by_query_type": by_type,
        }

    # ── Persistence ──────────────────────────────────────────────────────

    def save(self) -> None:
        """Persist weights and events now; failures are logged, not raised."""
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        self._unsaved = 0
        if self._store is None:
            return
        try:
            self._store.save(self._weights, self._events)
        except LearningStoreError as e:
            logger.warning("Failed to persist search monitor state: %s", e)
