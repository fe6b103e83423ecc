"""
RankingPipeline: adaptive hybrid ranking of scored candidate lists.

Executes one ranking call by:
1. Analyzing the query (QueryAnalyzer)
2. Fast-path weighted fusion to judge the initial result set
3. Deciding which optional stages to run (AdaptiveController + Learning advice)
4. Optional expansion → keyword list, then fusion (weighted or RRF)
5. Pinned boost, temporal decay / recency boost, MMR diversity selection
6. Optional re-rank through the async timeout boundary (``arank`` only)
7. Confidence filter and output budget

Stages 1-5 and 7 are synchronous and side-effect free. The re-rank call is
the only suspension point; timeout, failure or caller cancellation fall
back to the prepared order and leave a note on the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from memory_rank.application.learning import AdaptiveLearning, MonitorStore, PatternStatsStore, SearchMonitor
from memory_rank.application.pipeline.config import FusionStrategy, LearningMode, RankingConfig, SourceWeights
from memory_rank.application.search.adaptive_controller import apply_learning_advice, select_features
from memory_rank.application.search.budgeter import apply_budget
from memory_rank.application.search.keyword_scorer import build_keyword_list, extract_keywords
from memory_rank.application.search.query_analyzer import QueryAnalyzer
from memory_rank.application.search.query_expansion import QueryExpander
from memory_rank.application.search.ranking_algorithms import (
    apply_pinned_boost,
    fuse,
    mmr_select,
    weighted_fusion,
)
from memory_rank.application.search.reranker import Reranker, apply_rerank_order
from memory_rank.application.search.temporal_decay import apply_temporal_decay
from memory_rank.core.async_utils import timeout_with_fallback
from memory_rank.domain.entities import (
    CandidateItem,
    Feature,
    FeatureDecision,
    FusedResult,
    Provenance,
    QueryProfile,
    RankedItem,
    RankedList,
    RankingResult,
)

logger = logging.getLogger(__name__)

# Upstream input: ranked lists, or {source: [entry dicts]}
ListsInput = Sequence[RankedList] | Mapping[str, Any]

KEYWORD_SOURCE = Provenance.KEYWORD.value


@dataclass
class RankingContext:
    """Collaborators of a ranking pipeline. Passed in explicitly, never global."""

    config: RankingConfig = field(default_factory=RankingConfig)
    analyzer: QueryAnalyzer = field(default_factory=QueryAnalyzer)
    learning: AdaptiveLearning | None = None
    reranker: Reranker | None = None
    expander: QueryExpander = field(default_factory=QueryExpander)
    monitor: SearchMonitor | None = None

    @classmethod
    def from_config(cls, config: RankingConfig, *, reranker: Reranker | None = None) -> RankingContext:
        """Build a context whose Learning (and search monitor) use the configured store, loaded once here."""
        data_dir = config.learning.data_dir
        learning = AdaptiveLearning(
            PatternStatsStore(data_dir) if data_dir else None,
            min_observations=config.learning.min_observations,
            margin=config.learning.margin,
        )
        learning.load()

        monitor = None
        if config.learning.auto_tune_weights:
            monitor = SearchMonitor(
                MonitorStore(data_dir) if data_dir else None,
                max_events=config.learning.max_events,
                default_semantic=config.fusion.semantic_weight,
                default_keyword=config.fusion.keyword_weight,
            )
            monitor.load()
        return cls(config=config, learning=learning, reranker=reranker, monitor=monitor)


@dataclass
class PreparedRanking:
    """State after the synchronous stages, before re-rank and budgeting."""

    query: str
    profile: QueryProfile
    decision: FeatureDecision
    items: list[FusedResult]
    strategy: FusionStrategy
    fusion_weights: SourceWeights
    learning_advice: dict[str, bool | None] = field(default_factory=dict)
    timings_ms: dict[str, float] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)
    dropped_inputs: int = 0


class _Timer:
    """Accumulates per-stage wall time in milliseconds."""

    def __init__(self, timings: dict[str, float]) -> None:
        self._timings = timings
        self._mark = time.perf_counter()

    def lap(self, stage: str) -> None:
        now = time.perf_counter()
        self._timings[stage] = self._timings.get(stage, 0.0) + (now - self._mark) * 1000.0
        self._mark = now


def _coerce_lists(lists: ListsInput) -> list[RankedList]:
    """Accept RankedList objects or ``{source: entries}`` mappings."""
    if isinstance(lists, Mapping):
        coerced: list[RankedList] = []
        for source, entries in lists.items():
            if isinstance(entries, RankedList):
                coerced.append(entries)
            else:
                coerced.append(_list_from_entries(str(source), entries))
        return coerced
    return [entries if isinstance(entries, RankedList) else _list_from_entries("semantic", entries) for entries in lists]


def _list_from_entries(source: str, entries: Any) -> RankedList:
    entries = list(entries or [])
    if entries and all(isinstance(e, CandidateItem) for e in entries):
        return RankedList(source, entries)
    return RankedList.from_dicts(source, entries)


def _candidate_pool(lists: Sequence[RankedList]) -> list[CandidateItem]:
    """Every unique candidate, first occurrence wins."""
    pool: list[CandidateItem] = []
    seen: set[str] = set()
    for ranked_list in lists:
        for item in ranked_list:
            if item.id not in seen:
                seen.add(item.id)
                pool.append(item)
    return pool


class RankingPipeline:
    """Runs the ranking stages for one query at a time."""

    def __init__(self, context: RankingContext | None = None) -> None:
        self._context = context or RankingContext()

    @property
    def context(self) -> RankingContext:
        return self._context

    @property
    def config(self) -> RankingConfig:
        return self._context.config

    # =====================================================================
    # Public API
    # =====================================================================

    def prepare(
        self,
        query: str,
        lists: ListsInput,
        *,
        strategy: FusionStrategy | None = None,
        now: datetime | None = None,
    ) -> PreparedRanking:
        """Run every synchronous stage up to (not including) re-rank and budget."""
        config = self.config
        strategy = strategy or config.fusion.strategy
        now = now or datetime.now(timezone.utc)
        timings: dict[str, float] = {}
        notes: list[str] = []
        timer = _Timer(timings)

        ranked_lists = _coerce_lists(lists)
        dropped = sum(ranked_list.dropped for ranked_list in ranked_lists)
        if dropped:
            notes.append(f"Dropped {dropped} malformed candidate(s)")

        profile = self._context.analyzer.analyze(query)
        timer.lap("analyze")

        # Keyword list: caller-supplied, or built over the candidate pool
        pool = _candidate_pool(ranked_lists)
        has_keyword_list = any(rl.source == KEYWORD_SOURCE for rl in ranked_lists)
        base_terms = extract_keywords(query)
        length_scale = config.fusion.keyword_length_scale
        keyword_lists: list[RankedList] = []
        if not has_keyword_list:
            keyword_lists.append(build_keyword_list(pool, base_terms, KEYWORD_SOURCE, length_scale))
        timer.lap("keyword")

        # Fast path: weighted fusion judges the initial result set
        fast_path = weighted_fusion(
            [*ranked_lists, *keyword_lists],
            config.fusion.weights_for(FusionStrategy.WEIGHTED),
        )
        decision = select_features(query, profile, fast_path, config.adaptive)

        advice: dict[str, bool | None] = {}
        learning = self._context.learning
        if learning is not None and config.adaptive.learning_mode is not LearningMode.OFF:
            feature_advice = learning.advice_for(profile.pattern)
            advice = {feature.value: value for feature, value in feature_advice.items()}
            decision = apply_learning_advice(decision, feature_advice, config.adaptive.learning_mode, config.adaptive)
        timer.lap("decision")

        if decision.use_expansion:
            expansion = self._context.expander.expand(query)
            terms = list(dict.fromkeys([*base_terms, *expansion.terms]))
            expanded_list = build_keyword_list(pool, terms, KEYWORD_SOURCE, length_scale)
            if has_keyword_list:
                keyword_lists.append(expanded_list)
            else:
                keyword_lists = [expanded_list]
            logger.debug(f"Expansion added {len(terms) - len(base_terms)} terms for {query!r}")
            timer.lap("expansion")

        # Weighted fusion takes the search monitor's weights for this query type
        if strategy is FusionStrategy.WEIGHTED and self._context.monitor is not None:
            fusion_weights = self._context.monitor.optimal_weights(query)
        else:
            fusion_weights = config.fusion.weights_for(strategy)
        fused = fuse([*ranked_lists, *keyword_lists], config.fusion, strategy, fusion_weights)
        if config.fusion.boost_pinned:
            fused = apply_pinned_boost(fused, config.fusion.pinned_boost)
        timer.lap("fusion")

        if decision.use_decay or config.decay.recency_boost:
            fused = apply_temporal_decay(
                fused,
                config.decay,
                decay=decision.use_decay,
                boost=config.decay.recency_boost,
                now=now,
            )
            timer.lap("temporal")

        if config.diversity.enabled:
            mmr = mmr_select(
                fused,
                lambda_mmr=config.diversity.mmr_lambda,
                max_results=config.diversity.max_results,
            )
            fused = mmr.selected
            timer.lap("diversity")

        logger.debug(
            f"Prepared {len(fused)} results for {query!r} "
            f"({strategy.value}, features: {decision.features_used() or 'none'})"
        )
        return PreparedRanking(
            query=query,
            profile=profile,
            decision=decision,
            items=fused,
            strategy=strategy,
            fusion_weights=fusion_weights,
            learning_advice=advice,
            timings_ms=timings,
            notes=notes,
            dropped_inputs=dropped,
        )

    def finalize(self, prepared: PreparedRanking, items: Sequence[FusedResult] | None = None) -> RankingResult:
        """Confidence filter and budget, then build the downstream result."""
        start = time.perf_counter()
        budget = apply_budget(prepared.items if items is None else items, self.config.budget)
        timings = dict(prepared.timings_ms)
        timings["budget"] = (time.perf_counter() - start) * 1000.0
        timings["total"] = sum(timings.values())

        search_id = None
        monitor = self._context.monitor
        if monitor is not None and prepared.strategy is FusionStrategy.WEIGHTED:
            scores = [item.score for item in budget.items]
            avg_score = sum(scores) / len(scores) if scores else 0.0
            search_id = monitor.record_search(prepared.query, len(scores), avg_score, prepared.fusion_weights)

        ranked = [
            RankedItem(
                id=item.id,
                score=item.score,
                snippet=item.snippet,
                provenance=item.provenance,
                age_days=item.age_days,
            )
            for item in budget.items
        ]
        return RankingResult(
            query=prepared.query,
            items=ranked,
            decision=prepared.decision,
            profile=prepared.profile,
            learning_advice=prepared.learning_advice,
            timings_ms=timings,
            notes=list(prepared.notes),
            dropped_inputs=prepared.dropped_inputs,
            tokens_used=budget.tokens_used,
            search_id=search_id,
        )

    def rank(
        self,
        query: str,
        lists: ListsInput,
        *,
        strategy: FusionStrategy | None = None,
        now: datetime | None = None,
    ) -> RankingResult:
        """Synchronous ranking; never makes an external call, so re-rank is skipped."""
        prepared = self.prepare(query, lists, strategy=strategy, now=now)
        if prepared.decision.use_rerank:
            self._skip_rerank(prepared, "synchronous call")
        return self.finalize(prepared)

    async def arank(
        self,
        query: str,
        lists: ListsInput,
        *,
        strategy: FusionStrategy | None = None,
        now: datetime | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RankingResult:
        """
        Asynchronous ranking with the optional re-rank stage.

        The re-rank call is bounded by ``rerank.timeout_seconds`` and by
        ``cancel_event``. Either way the best already-computed order is
        returned. Cancelling the calling task cancels the in-flight call
        before CancelledError propagates.
        """
        prepared = self.prepare(query, lists, strategy=strategy, now=now)
        items = prepared.items

        if prepared.decision.use_rerank:
            reranker = self._context.reranker
            min_results = self.config.rerank.min_results
            if reranker is None:
                self._skip_rerank(prepared, "no re-ranker configured")
            elif len(items) < min_results:
                self._skip_rerank(prepared, f"{len(items)} < {min_results} results")
            elif cancel_event is not None and cancel_event.is_set():
                self._skip_rerank(prepared, "cancelled by caller")
            else:
                start = time.perf_counter()
                ids, error = await timeout_with_fallback(
                    reranker.rerank(query, items),
                    self.config.rerank.timeout_seconds,
                    None,
                    operation="rerank",
                    cancel_event=cancel_event,
                )
                prepared.timings_ms["rerank"] = (time.perf_counter() - start) * 1000.0
                if error is not None or ids is None:
                    self._skip_rerank(prepared, str(error) if error else "no ranking returned")
                else:
                    items = apply_rerank_order(items, ids)

        return self.finalize(prepared, items)

    def record_outcome(self, result: RankingResult, quality: float) -> None:
        """
        Feed the caller's quality judgement of ``result`` back into Learning
        and, for monitored calls, into the search monitor.

        Raises:
            InputError: ``quality`` is NaN or infinite
        """
        learning = self._context.learning
        monitor = self._context.monitor
        if learning is None and (monitor is None or result.search_id is None):
            logger.debug("No learning configured, outcome ignored")
            return
        if learning is not None:
            for feature in Feature:
                learning.record_outcome(result.profile.pattern, result.decision.enabled(feature), quality, feature)
        if monitor is not None and result.search_id is not None:
            monitor.record_effectiveness(result.search_id, quality)

    # =====================================================================
    # Helpers
    # =====================================================================

    @staticmethod
    def _skip_rerank(prepared: PreparedRanking, reason: str) -> None:
        prepared.decision = prepared.decision.with_override(Feature.RERANK, False, f"Re-ranking: skipped ({reason})")
        prepared.notes.append(f"Re-rank skipped: {reason}")
        logger.info(f"Re-rank skipped for {prepared.query!r}: {reason}")
