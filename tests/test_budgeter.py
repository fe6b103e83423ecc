"""
Tests for the confidence filter and output budgeter.
"""

import pytest

from memory_rank.application.pipeline.config import BudgetConfig
from memory_rank.application.search.budgeter import (
    apply_budget,
    estimate_tokens,
    filter_by_confidence,
    item_confidence,
    item_type,
    trim_to_budget,
)

from conftest import make_result


class TestEstimateTokens:
    @pytest.mark.parametrize(("length", "tokens"), [(0, 0), (1, 1), (4, 1), (5, 2), (2000, 500)])
    def test_four_chars_per_token(self, length, tokens):
        assert estimate_tokens("x" * length) == tokens


class TestConfidenceAndType:
    def test_metadata_confidence(self):
        assert item_confidence(make_result("a", 1, confidence=0.9)) == 0.9

    def test_snippet_marker(self):
        assert item_confidence(make_result("a", 1, "note (confidence: 0.85)")) == 0.85

    def test_malformed_marker_uses_default(self):
        assert item_confidence(make_result("a", 1, "confidence: 1.2.3"), default=0.4) == 0.4

    def test_default(self):
        assert item_confidence(make_result("a", 1, "plain"), default=0.5) == 0.5

    def test_type_from_metadata_or_marker(self):
        assert item_type(make_result("a", 1, memory_type="fact")) == "fact"
        assert item_type(make_result("a", 1, "memory_type: decision\nuse postgres")) == "decision"
        assert item_type(make_result("a", 1, "plain")) is None


class TestFilterByConfidence:
    def test_threshold_inclusive(self):
        items = [
            make_result("keep", 1, confidence=0.7),
            make_result("drop", 1, confidence=0.69),
        ]
        assert [i.id for i in filter_by_confidence(items, 0.7)] == ["keep"]

    def test_missing_confidence_uses_default(self):
        items = [make_result("a", 1, "plain")]
        assert filter_by_confidence(items, 0.7, default_confidence=0.5) == []
        assert len(filter_by_confidence(items, 0.7, default_confidence=0.8)) == 1

    def test_type_filter_drops_untyped(self):
        items = [
            make_result("fact", 1, confidence=0.9, memory_type="fact"),
            make_result("pref", 1, confidence=0.9, memory_type="preference"),
            make_result("none", 1, confidence=0.9),
        ]
        assert [i.id for i in filter_by_confidence(items, 0.5, allowed_types=["fact"])] == ["fact"]


class TestTrimToBudget:
    def test_stops_at_first_item_over_budget(self):
        items = [
            make_result("a", 0.9, "x" * 2000),
            make_result("b", 0.8, "x" * 2000),
            make_result("c", 0.7, "x" * 4800),
        ]
        kept, tokens = trim_to_budget(items, token_budget=900, max_memories=10)
        assert [i.id for i in kept] == ["a"]
        assert tokens == 500

    def test_never_skips_ahead(self):
        items = [make_result("big", 0.9, "x" * 4800), make_result("small", 0.8, "x" * 40)]
        kept, tokens = trim_to_budget(items, token_budget=900, max_memories=10)
        assert kept == []
        assert tokens == 0

    def test_max_memories(self):
        items = [make_result(str(i), 1.0, "short") for i in range(5)]
        kept, _ = trim_to_budget(items, token_budget=2000, max_memories=2)
        assert [i.id for i in kept] == ["0", "1"]

    def test_empty_snippets_cost_nothing(self):
        kept, tokens = trim_to_budget([make_result("a", 1.0), make_result("b", 0.5)], 0, 10)
        assert len(kept) == 2
        assert tokens == 0


class TestApplyBudget:
    def test_counts(self):
        items = [
            make_result("a", 0.9, "x" * 2000, confidence=0.9),
            make_result("low", 0.85, "short", confidence=0.2),
            make_result("b", 0.8, "x" * 2000, confidence=0.9),
            make_result("c", 0.7, "x" * 4800, confidence=0.9),
        ]
        result = apply_budget(items, BudgetConfig(token_budget=1000))
        assert [i.id for i in result.items] == ["a", "b"]
        assert result.tokens_used == 1000
        assert result.dropped_low_confidence == 1
        assert result.dropped_over_budget == 1
        assert len(result) == 2

    def test_order_preserved(self):
        items = [make_result(i, s, confidence=0.9) for i, s in (("z", 0.1), ("a", 0.9))]
        assert [i.id for i in apply_budget(items).items] == ["z", "a"]
