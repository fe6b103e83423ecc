"""
Rule-based query expansion.

Adds related vocabulary for common technical query shapes so the keyword
stage can match snippets that describe the same thing in other words:

    "gateway setup" → ["gateway setup", "configuration", "installation", "deployment"]

Expansion is local and deterministic. The adaptive controller decides
whether a call pays for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from memory_rank.application.search.keyword_scorer import STOP_WORDS, extract_keywords

logger = logging.getLogger(__name__)


# Trigger substrings → related terms
EXPANSION_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("setup", "configure"), ("configuration", "installation", "deployment")),
    (("error", "fail"), ("issue", "problem", "bug", "crash")),
    (("memory", "ram"), ("storage", "cache", "performance")),
    (("api", "endpoint"), ("interface", "rest", "service")),
    (("database", "db"), ("storage", "persistence", "records")),
)

# Phrase rewrites: trigger → replacements
PHRASE_REWRITES: dict[str, tuple[str, ...]] = {
    "how to": ("guide to", "tutorial for", "steps to"),
    "best": ("optimal", "recommended"),
    "better": ("improved",),
    "fix": ("resolve", "repair"),
    "solve": ("troubleshoot",),
}

TECH_SYNONYMS: dict[str, tuple[str, ...]] = {
    "server": ("host", "machine", "instance"),
    "client": ("frontend", "ui", "interface"),
    "database": ("store", "repository", "datastore"),
    "api": ("endpoint", "interface", "service"),
    "config": ("settings", "configuration", "options"),
    "error": ("issue", "problem", "failure"),
    "performance": ("speed", "latency", "throughput"),
}


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def rule_based_expansion(query: str) -> list[str]:
    """Original query (lowercased) followed by rule-triggered related terms."""
    text = query.lower()
    expansions = [text]
    for triggers, related in EXPANSION_RULES:
        if any(trigger in text for trigger in triggers):
            expansions.extend(related)
    return _dedupe(expansions)


def alternative_phrasings(query: str) -> list[str]:
    """Whole-query rewrites: phrase substitutions plus technical synonyms."""
    text = query.lower()
    phrases = [text]
    for trigger, replacements in PHRASE_REWRITES.items():
        if trigger in text:
            phrases.extend(text.replace(trigger, replacement) for replacement in replacements)
    for word, synonyms in TECH_SYNONYMS.items():
        if word in text:
            phrases.extend(text.replace(word, synonym) for synonym in synonyms)
    return _dedupe(phrases)


@dataclass
class ExpansionResult:
    """Expanded queries plus the keyword terms they contribute."""

    original: str
    expanded: list[str] = field(default_factory=list)
    terms: list[str] = field(default_factory=list)
    confidence: float = 0.7

    @property
    def added_terms(self) -> int:
        return len(self.terms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "expanded": self.expanded,
            "terms": self.terms,
            "confidence": round(self.confidence, 3),
        }


class QueryExpander:
    """
    Expands a query into extra keyword terms.

    Args:
        include_phrasings: Also add alternative phrasings (synonym rewrites)
    """

    BASE_CONFIDENCE = 0.7
    CONFIDENCE_STEP = 0.1
    MAX_CONFIDENCE = 0.95

    def __init__(self, include_phrasings: bool = True):
        self.include_phrasings = include_phrasings

    def expand(self, query: str) -> ExpansionResult:
        expanded = rule_based_expansion(query)
        if self.include_phrasings:
            expanded = _dedupe(expanded + alternative_phrasings(query))

        terms: list[str] = []
        for phrase in expanded:
            for term in extract_keywords(phrase):
                if term not in terms:
                    terms.append(term)
            # Short single-word expansions ("bug", "rest") are terms too
            if " " not in phrase and len(phrase) > 2 and phrase not in STOP_WORDS and phrase not in terms:
                terms.append(phrase)

        confidence = min(self.BASE_CONFIDENCE + (len(expanded) - 1) * self.CONFIDENCE_STEP, self.MAX_CONFIDENCE)
        logger.debug(f"Expanded {query!r} into {len(expanded)} phrasings, {len(terms)} terms")
        return ExpansionResult(original=query, expanded=expanded, terms=terms, confidence=confidence)
