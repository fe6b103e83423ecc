"""
Tests for rule-based query expansion.
"""

import pytest

from memory_rank.application.search.query_expansion import (
    QueryExpander,
    alternative_phrasings,
    rule_based_expansion,
)


class TestRuleBasedExpansion:
    def test_setup_rule(self):
        assert rule_based_expansion("Gateway Setup") == [
            "gateway setup",
            "configuration",
            "installation",
            "deployment",
        ]

    def test_multiple_rules_deduped(self):
        expanded = rule_based_expansion("memory database")
        assert expanded[0] == "memory database"
        assert expanded.count("storage") == 1
        assert "cache" in expanded
        assert "persistence" in expanded

    def test_no_rule_returns_query_only(self):
        assert rule_based_expansion("lunch plans") == ["lunch plans"]


class TestAlternativePhrasings:
    def test_phrase_rewrite(self):
        phrasings = alternative_phrasings("how to restart nginx")
        assert "guide to restart nginx" in phrasings
        assert "steps to restart nginx" in phrasings

    def test_tech_synonyms(self):
        phrasings = alternative_phrasings("server config")
        assert "host config" in phrasings
        assert "server settings" in phrasings


class TestQueryExpander:
    def test_expand_adds_terms(self):
        result = QueryExpander().expand("gateway setup")
        assert result.original == "gateway setup"
        assert result.terms[:2] == ["gateway", "setup"]
        assert {"configuration", "installation", "deployment"} <= set(result.terms)
        assert result.added_terms == len(result.terms)

    def test_short_single_word_expansions_kept(self):
        result = QueryExpander().expand("login error")
        assert "bug" in result.terms
        assert "issue" in result.terms

    def test_confidence_grows_with_phrasings(self):
        plain = QueryExpander().expand("lunch plans")
        rich = QueryExpander().expand("gateway setup")
        assert plain.confidence == pytest.approx(0.7)
        assert rich.confidence == pytest.approx(0.95)

    def test_without_phrasings(self):
        result = QueryExpander(include_phrasings=False).expand("server config")
        assert result.expanded == ["server config"]
        assert "host" not in result.terms

    def test_to_dict(self):
        d = QueryExpander().expand("gateway setup").to_dict()
        assert d["original"] == "gateway setup"
        assert "configuration" in d["terms"]
