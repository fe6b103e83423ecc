"""
Tests for keyword_scorer - lexical scoring of snippets.
"""

import pytest

from memory_rank.application.search.keyword_scorer import (
    KeywordScorer,
    build_keyword_list,
    extract_keywords,
    keyword_score,
)

from conftest import make_item


class TestExtractKeywords:
    def test_drops_stop_words_and_short_words(self):
        assert extract_keywords("How do I set up the Gateway?") == ["gateway"]

    def test_dedupes_in_order(self):
        assert extract_keywords("backup nightly backup restore") == ["backup", "nightly", "restore"]

    def test_empty(self):
        assert extract_keywords("") == []


class TestKeywordScore:
    def test_matching_snippet_scores_positive(self):
        score = keyword_score("Configured the gateway on port 18789", ["gateway", "setup"])
        # 1 match / (2 terms * sqrt(36 / 100))
        assert score == pytest.approx(1 / (2 * 0.6))

    def test_unrelated_snippet_scores_zero(self):
        assert keyword_score("Unrelated note about lunch plans", ["gateway", "setup"]) == 0.0

    def test_case_insensitive(self):
        assert keyword_score("GATEWAY", ["gateway"]) == keyword_score("gateway", ["GATEWAY"])

    def test_capped_at_one(self):
        assert keyword_score("gateway gateway gateway", ["gateway"]) == 1.0

    def test_longer_snippet_scores_lower(self):
        short = keyword_score("gateway " + "x" * 100, ["gateway"])
        long = keyword_score("gateway " + "x" * 1000, ["gateway"])
        assert 0 < long < short

    def test_length_scale(self):
        text = "gateway " + "x" * 392
        assert keyword_score(text, ["gateway"], length_scale=400) > keyword_score(text, ["gateway"])

    def test_empty_inputs(self):
        assert keyword_score("", ["gateway"]) == 0.0
        assert keyword_score("gateway", []) == 0.0
        assert keyword_score("gateway", ["  "]) == 0.0


class TestBuildKeywordList:
    def test_keeps_positive_scores_only(self):
        candidates = [
            make_item("m1", 0.9, "Configured the gateway on port 18789"),
            make_item("m4", 0.6, "Unrelated note about lunch plans"),
        ]
        keyword_list = build_keyword_list(candidates, ["gateway"])
        assert keyword_list.source == "keyword"
        assert [i.id for i in keyword_list] == ["m1"]

    def test_first_occurrence_wins_and_metadata_carried(self):
        candidates = [
            make_item("m1", 0.9, "gateway notes", confidence=0.8),
            make_item("m1", 0.2, "gateway gateway gateway"),
        ]
        keyword_list = build_keyword_list(candidates, ["gateway"], source="kw")
        assert len(keyword_list) == 1
        assert keyword_list.items[0].snippet == "gateway notes"
        assert keyword_list.items[0].metadata.confidence == 0.8
        assert keyword_list.source == "kw"


class TestKeywordScorer:
    def test_from_query(self):
        scorer = KeywordScorer.from_query("gateway setup")
        assert scorer.terms == ("gateway", "setup")
        assert scorer.score("Configured the gateway on port 18789") > 0
        assert scorer.score("Unrelated note about lunch plans") == 0.0

    def test_rank_sorted(self):
        scorer = KeywordScorer(["gateway"])
        ranked = scorer.rank(
            [
                make_item("long", 0.5, "gateway " + "x" * 500),
                make_item("short", 0.5, "gateway port"),
            ]
        )
        assert [i.id for i in ranked] == ["short", "long"]
