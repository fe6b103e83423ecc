"""
Tests for RankingPipeline: end-to-end ranking calls.

Covers:
- Synchronous rank over dict / RankedList input
- Malformed input handling, empty input
- Adaptive decisions, expansion, learning advice and outcome recording
- Search monitor recording and monitor-supplied fusion weights
- Async re-rank with success, timeout, failure and cancellation fallbacks
"""

from __future__ import annotations

import asyncio

import pytest

from memory_rank.application.learning import AdaptiveLearning, SearchMonitor
from memory_rank.application.pipeline import (
    FusionStrategy,
    RankingConfig,
    RankingContext,
    RankingPipeline,
)
from memory_rank.application.search.reranker import HeuristicReranker
from memory_rank.core.exceptions import InputError
from memory_rank.domain.entities import Feature, RankedList

QUERY = "gateway setup"


# =============================================================================
# Fixtures
# =============================================================================


def _stable_config(**overrides) -> RankingConfig:
    """No temporal stage and no MMR, so the fused order is the final order."""
    policies = {"decay": "never", **overrides.pop("per_feature_policy", {})}
    return RankingConfig.from_dict(
        {
            "boost_recent": False,
            "per_feature_policy": policies,
            "diversity": {"enabled": False},
            **overrides,
        }
    )


def _pipeline(config=None, **context) -> RankingPipeline:
    return RankingPipeline(RankingContext(config=config or RankingConfig(), **context))


class ReverseReranker:
    async def rerank(self, query, items):
        return [item.id for item in reversed(items)]


class SlowReranker:
    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def rerank(self, query, items):
        self.started.set()
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return [item.id for item in items]


class BrokenReranker:
    async def rerank(self, query, items):
        raise RuntimeError("model crashed")


# =============================================================================
# Synchronous ranking
# =============================================================================


class TestRank:
    def test_default_pipeline(self, semantic_entries, fixed_now):
        result = _pipeline().rank(QUERY, {"semantic": semantic_entries}, now=fixed_now)

        assert result.ids[0] == "m1"  # fresh, semantic + keyword match
        assert set(result.ids) == {"m1", "m2", "m3", "m4"}
        assert result.decision.use_decay
        assert not result.decision.use_expansion
        assert not result.decision.use_rerank
        assert len(result.decision.reasons) == 3
        assert {"analyze", "keyword", "decision", "fusion", "temporal", "diversity", "budget", "total"} <= set(
            result.timings_ms
        )

    def test_fused_order_and_provenance(self, semantic_entries):
        result = _pipeline(_stable_config()).rank(QUERY, {"semantic": semantic_entries})
        by_id = {item.id: item for item in result.items}

        # m3 is pinned: 0.77/0.92 * 0.7 * 1.2 beats m4
        assert result.ids == ["m2", "m1", "m3", "m4"]
        assert by_id["m2"].provenance == "hybrid"
        assert by_id["m1"].provenance == "hybrid"
        assert by_id["m4"].provenance == "semantic"
        assert "temporal" not in result.timings_ms

    def test_ranked_list_input(self, semantic_list):
        by_mapping = _pipeline(_stable_config()).rank(QUERY, {"semantic": semantic_list})
        by_sequence = _pipeline(_stable_config()).rank(QUERY, [semantic_list])
        assert by_mapping.ids == by_sequence.ids

    def test_deterministic(self, semantic_entries, fixed_now):
        pipeline = _pipeline()
        first = pipeline.rank(QUERY, {"semantic": semantic_entries}, now=fixed_now)
        second = pipeline.rank(QUERY, {"semantic": semantic_entries}, now=fixed_now)
        assert [(i.id, i.score) for i in first.items] == [(i.id, i.score) for i in second.items]

    def test_malformed_entries_dropped(self, semantic_entries):
        entries = [*semantic_entries, {"score": 0.99}, {"id": "bad", "score": "high"}]
        result = _pipeline(_stable_config()).rank(QUERY, {"semantic": entries})
        assert result.dropped_inputs == 2
        assert "Dropped 2 malformed candidate(s)" in result.notes
        assert "bad" not in result.ids

    def test_bad_metadata_does_not_abort_call(self, semantic_entries):
        entries = [
            *semantic_entries,
            {"id": "bad", "score": 0.5, "metadata": "oops"},
            {"id": "far", "score": 0.5, "snippet": "gateway", "metadata": {"timestamp": 1e20, "confidence": 0.9}},
        ]
        result = _pipeline(_stable_config()).rank(QUERY, {"semantic": entries})
        assert result.dropped_inputs == 1
        assert "bad" not in result.ids
        assert "far" in result.ids

    def test_empty_input(self):
        result = _pipeline().rank(QUERY, {})
        assert result.items == []
        assert result.decision.use_expansion
        assert result.tokens_used == 0

    def test_caller_keyword_list(self, semantic_entries):
        keyword = [
            {"id": "k1", "score": 3.0, "snippet": "gateway gateway", "metadata": {"confidence": 0.9}},
            {"id": "k2", "score": 0.6, "snippet": "gateway once", "metadata": {"confidence": 0.9}},
        ]
        config = _stable_config(per_feature_policy={"expansion": "never"})
        result = _pipeline(config).rank(QUERY, {"semantic": semantic_entries, "keyword": keyword})
        by_id = {item.id: item for item in result.items}

        assert by_id["k2"].provenance == "keyword"
        # No generated keyword list when the caller supplies one
        assert by_id["m1"].provenance == "semantic"

    def test_rrf_strategy(self, semantic_entries):
        result = _pipeline(_stable_config()).rank(QUERY, {"semantic": semantic_entries}, strategy=FusionStrategy.RRF)
        by_id = {item.id: item for item in result.items}
        assert by_id["m2"].provenance == "hybrid"
        assert by_id["m4"].provenance == "semantic"
        assert by_id["m4"].score == pytest.approx(1 / 64)

    def test_confidence_filter(self, semantic_entries):
        config = RankingConfig.from_dict({"min_confidence": 0.9})
        result = _pipeline(config).rank(QUERY, {"semantic": semantic_entries})
        assert set(result.ids) == {"m1", "m3"}

    def test_sync_rank_skips_forced_rerank(self, semantic_entries):
        config = _stable_config(per_feature_policy={"rerank": "always"})
        result = _pipeline(config, reranker=ReverseReranker()).rank(QUERY, {"semantic": semantic_entries})
        assert not result.decision.use_rerank
        assert result.decision.reasons[-1] == "Re-ranking: skipped (synchronous call)"
        assert result.ids == ["m2", "m1", "m3", "m4"]

    def test_to_dict(self, semantic_entries):
        data = _pipeline().rank(QUERY, {"semantic": semantic_entries}).to_dict()
        assert data["total_results"] == 4
        assert data["profile"]["pattern"] == "gateway setup"
        assert "decay" in data["decision"]["features_used"]


class TestExpansion:
    @pytest.fixture
    def sparse_entries(self):
        return [
            {"id": "m1", "score": 0.9, "snippet": "Configured the gateway on port 18789", "metadata": {"confidence": 0.9}},
            {"id": "m5", "score": 0.4, "snippet": "Deployment checklist for production", "metadata": {"confidence": 0.9}},
        ]

    def test_low_results_trigger_expansion(self, sparse_entries):
        result = _pipeline(_stable_config()).rank(QUERY, {"semantic": sparse_entries})
        by_id = {item.id: item for item in result.items}

        assert result.decision.use_expansion
        assert "expansion" in result.timings_ms
        # "deployment" is an expanded term for setup queries
        assert by_id["m5"].provenance == "hybrid"

    def test_expanded_keyword_list_counts_once(self):
        entry = {"id": "a", "score": 1.0, "snippet": "gateway setup notes", "metadata": {"confidence": 0.9}}
        config = _stable_config(per_feature_policy={"expansion": "always"})
        prepared = _pipeline(config).prepare(QUERY, {"semantic": [entry], "keyword": [entry]})

        assert prepared.decision.use_expansion
        assert prepared.items[0].score == pytest.approx(0.7 + 0.3)

    def test_expansion_forced_off(self, sparse_entries):
        config = _stable_config(per_feature_policy={"expansion": "never"})
        result = _pipeline(config).rank(QUERY, {"semantic": sparse_entries})
        by_id = {item.id: item for item in result.items}

        assert not result.decision.use_expansion
        assert by_id["m5"].provenance == "semantic"


# =============================================================================
# Learning
# =============================================================================


class TestLearning:
    def test_record_outcome(self, semantic_entries):
        learning = AdaptiveLearning()
        pipeline = _pipeline(learning=learning)
        result = pipeline.rank(QUERY, {"semantic": semantic_entries})

        pipeline.record_outcome(result, 0.9)

        assert learning.snapshot(Feature.DECAY)["gateway setup"].count_with == 1
        assert learning.snapshot(Feature.EXPANSION)["gateway setup"].count_without == 1

    def test_record_outcome_without_learning(self, semantic_entries):
        pipeline = _pipeline()
        pipeline.record_outcome(pipeline.rank(QUERY, {"semantic": semantic_entries}), 0.5)

    def test_advise_mode_notes_only(self, semantic_entries):
        learning = AdaptiveLearning(min_observations=1, margin=0.0)
        learning.record_outcome("gateway setup", True, 0.9, Feature.EXPANSION)

        result = _pipeline(_stable_config(), learning=learning).rank(QUERY, {"semantic": semantic_entries})

        assert not result.decision.use_expansion
        assert result.learning_advice["expansion"] is True
        assert "Query expansion: learning suggests it helps this pattern" in result.decision.reasons

    def test_override_mode_flips_feature(self, semantic_entries):
        learning = AdaptiveLearning(min_observations=1, margin=0.0)
        learning.record_outcome("gateway setup", True, 0.9, Feature.EXPANSION)
        config = _stable_config(learning_mode="override")

        result = _pipeline(config, learning=learning).rank(QUERY, {"semantic": semantic_entries})

        assert result.decision.use_expansion
        assert "enabled by learning" in result.decision.reasons[-1]

    def test_off_mode_ignores_learning(self, semantic_entries):
        learning = AdaptiveLearning(min_observations=1, margin=0.0)
        learning.record_outcome("gateway setup", True, 0.9, Feature.EXPANSION)
        config = _stable_config(learning_mode="off")

        result = _pipeline(config, learning=learning).rank(QUERY, {"semantic": semantic_entries})

        assert result.learning_advice == {}
        assert not result.decision.use_expansion

    def test_context_from_config_persists(self, semantic_entries, temp_dir):
        config = RankingConfig.from_dict({"learning_dir": str(temp_dir / "learn")})
        pipeline = RankingPipeline(RankingContext.from_config(config))
        pipeline.record_outcome(pipeline.rank(QUERY, {"semantic": semantic_entries}), 0.8)

        assert (temp_dir / "learn" / "expansion.yaml").exists()

        reloaded = RankingContext.from_config(config)
        assert reloaded.learning.snapshot(Feature.DECAY)["gateway setup"].total == 1


class TestSearchMonitor:
    def test_weighted_call_recorded_and_scored(self, semantic_entries):
        monitor = SearchMonitor()
        pipeline = _pipeline(_stable_config(), monitor=monitor)
        result = pipeline.rank(QUERY, {"semantic": semantic_entries})

        assert result.search_id is not None
        assert result.to_dict()["search_id"] == result.search_id

        pipeline.record_outcome(result, 0.9)
        metrics = monitor.get_metrics()
        assert metrics["scored_searches"] == 1
        assert metrics["avg_effectiveness"] == pytest.approx(0.9)

    def test_monitor_weights_drive_fusion(self, semantic_entries):
        monitor = SearchMonitor(default_semantic=0.0, default_keyword=1.0)
        prepared = _pipeline(_stable_config(), monitor=monitor).prepare(QUERY, {"semantic": semantic_entries})
        by_id = {item.id: item for item in prepared.items}

        assert prepared.fusion_weights.weight_for("semantic") == 0.0
        # no keyword match, so nothing left once semantic weight is zero
        assert by_id["m4"].score == pytest.approx(0.0)

    def test_rrf_calls_not_recorded(self, semantic_entries):
        monitor = SearchMonitor()
        result = _pipeline(_stable_config(), monitor=monitor).rank(
            QUERY, {"semantic": semantic_entries}, strategy=FusionStrategy.RRF
        )
        assert result.search_id is None
        assert monitor.get_metrics()["total_searches"] == 0

    def test_non_finite_outcome_rejected(self, semantic_entries):
        pipeline = _pipeline(_stable_config(), monitor=SearchMonitor())
        result = pipeline.rank(QUERY, {"semantic": semantic_entries})
        with pytest.raises(InputError):
            pipeline.record_outcome(result, float("nan"))

    def test_context_from_config_persists_monitor(self, semantic_entries, temp_dir):
        config = RankingConfig.from_dict({"learning_dir": str(temp_dir / "learn"), "auto_tune_weights": True})
        context = RankingContext.from_config(config)
        assert context.monitor is not None

        pipeline = RankingPipeline(context)
        pipeline.record_outcome(pipeline.rank(QUERY, {"semantic": semantic_entries}), 0.8)

        assert (temp_dir / "learn" / "search_monitor.yaml").exists()
        assert RankingContext.from_config(config).monitor.get_metrics()["scored_searches"] == 1

    def test_monitor_off_by_default(self):
        assert RankingContext.from_config(RankingConfig()).monitor is None


# =============================================================================
# Async re-rank
# =============================================================================


class TestAsyncRerank:
    @pytest.fixture
    def rerank_config(self):
        return _stable_config(per_feature_policy={"rerank": "always"}, rerank_timeout_seconds=0.05)

    @pytest.mark.asyncio
    async def test_rerank_applied(self, semantic_entries, rerank_config):
        pipeline = _pipeline(rerank_config, reranker=ReverseReranker())
        result = await pipeline.arank(QUERY, {"semantic": semantic_entries})

        assert result.ids == ["m4", "m3", "m1", "m2"]
        assert result.decision.use_rerank
        assert "rerank" in result.timings_ms

    @pytest.mark.asyncio
    async def test_heuristic_reranker(self, semantic_entries, rerank_config):
        pipeline = _pipeline(rerank_config, reranker=HeuristicReranker())
        result = await pipeline.arank(QUERY, {"semantic": semantic_entries})
        assert result.decision.use_rerank
        assert set(result.ids) == {"m1", "m2", "m3", "m4"}

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, semantic_entries, rerank_config):
        reranker = SlowReranker()
        pipeline = _pipeline(rerank_config, reranker=reranker)
        result = await pipeline.arank(QUERY, {"semantic": semantic_entries})

        assert result.ids == ["m2", "m1", "m3", "m4"]
        assert not result.decision.use_rerank
        assert "timed out" in result.notes[-1]
        await asyncio.sleep(0.01)
        assert reranker.cancelled

    @pytest.mark.asyncio
    async def test_failure_falls_back(self, semantic_entries, rerank_config):
        pipeline = _pipeline(rerank_config, reranker=BrokenReranker())
        result = await pipeline.arank(QUERY, {"semantic": semantic_entries})

        assert result.ids == ["m2", "m1", "m3", "m4"]
        assert "model crashed" in result.notes[-1]

    @pytest.mark.asyncio
    async def test_cancel_event_mid_call(self, semantic_entries):
        config = _stable_config(per_feature_policy={"rerank": "always"}, rerank_timeout_seconds=5.0)
        reranker = SlowReranker()
        cancel_event = asyncio.Event()
        pipeline = _pipeline(config, reranker=reranker)

        task = asyncio.create_task(pipeline.arank(QUERY, {"semantic": semantic_entries}, cancel_event=cancel_event))
        await reranker.started.wait()
        cancel_event.set()
        result = await task

        assert result.ids == ["m2", "m1", "m3", "m4"]
        assert "cancelled by caller" in result.notes[-1]

    @pytest.mark.asyncio
    async def test_cancel_event_already_set(self, semantic_entries, rerank_config):
        cancel_event = asyncio.Event()
        cancel_event.set()
        reranker = SlowReranker()
        pipeline = _pipeline(rerank_config, reranker=reranker)

        result = await pipeline.arank(QUERY, {"semantic": semantic_entries}, cancel_event=cancel_event)

        assert not reranker.started.is_set()
        assert result.notes[-1] == "Re-rank skipped: cancelled by caller"

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, semantic_entries):
        config = _stable_config(per_feature_policy={"rerank": "always"}, rerank_timeout_seconds=5.0)
        reranker = SlowReranker()
        pipeline = _pipeline(config, reranker=reranker)

        task = asyncio.create_task(pipeline.arank(QUERY, {"semantic": semantic_entries}))
        await reranker.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        assert reranker.cancelled

    @pytest.mark.asyncio
    async def test_no_reranker(self, semantic_entries, rerank_config):
        result = await _pipeline(rerank_config).arank(QUERY, {"semantic": semantic_entries})
        assert result.notes[-1] == "Re-rank skipped: no re-ranker configured"

    @pytest.mark.asyncio
    async def test_too_few_results(self, semantic_entries, rerank_config):
        pipeline = _pipeline(rerank_config, reranker=ReverseReranker())
        result = await pipeline.arank(QUERY, {"semantic": semantic_entries[:3]})

        assert not result.decision.use_rerank
        assert result.notes[-1] == "Re-rank skipped: 3 < 4 results"

    @pytest.mark.asyncio
    async def test_outcome_records_actual_usage(self, semantic_entries, rerank_config):
        learning = AdaptiveLearning()
        pipeline = _pipeline(rerank_config, reranker=SlowReranker(), learning=learning)
        result = await pipeline.arank(QUERY, {"semantic": semantic_entries})

        pipeline.record_outcome(result, 0.4)

        assert learning.snapshot(Feature.RERANK)["gateway setup"].count_without == 1


def test_ranked_list_passthrough_keeps_source(semantic_list):
    keyword = RankedList("keyword", [])
    config = _stable_config(per_feature_policy={"expansion": "never"})
    result = _pipeline(config).rank(QUERY, [semantic_list, keyword])
    # An empty caller keyword list still suppresses the generated one
    assert all(item.provenance == "semantic" for item in result.items)
