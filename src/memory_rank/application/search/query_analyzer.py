"""
QueryAnalyzer - Heuristic Query Profiling for Adaptive Ranking

This module analyzes the raw query text to determine:
1. Complexity (simple lookup vs. long or ambiguous question)
2. Ambiguity / specificity from vague-term and question-phrasing cues
3. Domain specificity from a technical lexicon
4. Expected recall, which drives whether expansion is worth paying for

It also derives the normalized query pattern used as the Learning key.

Architecture Decision:
    QueryAnalyzer is stateless and uses lexicons + regex patterns only.
    It does NOT call any external service - pure local processing.

Example:
    >>> profile = analyze_query("api gateway config")
    >>> profile.complexity
    QueryComplexity.SIMPLE
    >>> profile.expected_recall
    ExpectedRecall.LOW
"""

from __future__ import annotations

import re

from memory_rank.application.search.keyword_scorer import STOP_WORDS
from memory_rank.domain.entities import ExpectedRecall, QueryComplexity, QueryProfile

_PATTERN_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_PATTERN_DIGITS = re.compile(r"\d+")


class QueryAnalyzer:
    """
    Query analyzer for adaptive feature selection.

    Usage:
        analyzer = QueryAnalyzer()
        profile = analyzer.analyze("explain how embedding search works")

        print(profile.complexity)       # QueryComplexity.MEDIUM
        print(profile.expected_recall)  # ExpectedRecall.MEDIUM

    Note:
        Subclasses may override the lexicons to adapt to another domain.
    """

    # Domain lexicon (technical vocabulary lowers expected recall)
    TECHNICAL_TERMS = frozenset(
        {
            "api",
            "config",
            "database",
            "server",
            "gateway",
            "endpoint",
            "memory",
            "search",
            "embedding",
            "vector",
            "cluster",
            "async",
            "await",
            "promise",
            "callback",
            "function",
        }
    )

    # Vague terms (raise ambiguity)
    VAGUE_TERMS = frozenset(
        {
            "thing",
            "stuff",
            "something",
            "anything",
            "it",
            "that",
            "this",
            "good",
            "bad",
            "nice",
            "ok",
        }
    )

    # Question phrasing, matched on the raw query
    INTERROGATIVE_PATTERNS = (
        re.compile(r"how (to|do|can)", re.IGNORECASE),
        re.compile(r"what (is|are|does)", re.IGNORECASE),
        re.compile(r"why (is|does)", re.IGNORECASE),
        re.compile(r"explain", re.IGNORECASE),
    )

    MIN_TOKEN_LENGTH = 3
    INTERROGATIVE_AMBIGUITY = 0.3
    AMBIGUOUS_THRESHOLD = 0.4
    SIMPLE_MAX_TOKENS = 3
    COMPLEX_MIN_TOKENS = 9
    TECHNICAL_THRESHOLD = 0.5

    def analyze(self, query: str) -> QueryProfile:
        """
        Analyze a query and return its profile.

        Args:
            query: Raw query text

        Returns:
            QueryProfile with all scores in [0, 1]
        """
        tokens = self._tokenize(query)
        token_count = len(tokens)
        has_interrogative = self._has_interrogative(query)

        if token_count == 0:
            domain_specificity = 0.0
            ambiguity = 0.0
        else:
            technical = sum(1 for t in tokens if t in self.TECHNICAL_TERMS)
            vague = sum(1 for t in tokens if t in self.VAGUE_TERMS)
            domain_specificity = min(1.0, technical / token_count)
            ambiguity = vague / token_count
            if has_interrogative:
                ambiguity += self.INTERROGATIVE_AMBIGUITY
            ambiguity = min(max(ambiguity, 0.0), 1.0)

        specificity = min(max(1.0 - ambiguity, 0.0), 1.0)

        return QueryProfile(
            query=query,
            tokens=tuple(tokens),
            complexity=self._determine_complexity(token_count, ambiguity, has_interrogative),
            ambiguity=ambiguity,
            specificity=specificity,
            domain_specificity=domain_specificity,
            expected_recall=self._determine_recall(domain_specificity, ambiguity),
            has_interrogative=has_interrogative,
            pattern=query_pattern(query),
        )

    def _tokenize(self, query: str) -> list[str]:
        """Lowercase whitespace tokens, dropping very short ones."""
        return [t for t in query.lower().split() if len(t) >= self.MIN_TOKEN_LENGTH]

    def _has_interrogative(self, query: str) -> bool:
        return any(p.search(query) for p in self.INTERROGATIVE_PATTERNS)

    def _determine_complexity(self, token_count: int, ambiguity: float, has_interrogative: bool) -> QueryComplexity:
        if token_count <= self.SIMPLE_MAX_TOKENS and not has_interrogative:
            return QueryComplexity.SIMPLE
        if ambiguity > self.AMBIGUOUS_THRESHOLD or token_count >= self.COMPLEX_MIN_TOKENS:
            return QueryComplexity.COMPLEX
        return QueryComplexity.MEDIUM

    def _determine_recall(self, domain_specificity: float, ambiguity: float) -> ExpectedRecall:
        if domain_specificity > self.TECHNICAL_THRESHOLD:
            return ExpectedRecall.LOW
        if ambiguity > self.AMBIGUOUS_THRESHOLD:
            return ExpectedRecall.HIGH
        return ExpectedRecall.MEDIUM


_default_analyzer = QueryAnalyzer()


def analyze_query(query: str) -> QueryProfile:
    """Analyze ``query`` with the default lexicons."""
    return _default_analyzer.analyze(query)


def query_pattern(query: str) -> str:
    """
    Normalized query shape used as the Learning key.

    Queries that differ only in word order, punctuation, casing, numbers or
    stop words share a pattern:

        >>> query_pattern("Gateway on port 18789?")
        'gateway port'
        >>> query_pattern("the port of the GATEWAY")
        'gateway port'
    """
    cleaned = _PATTERN_NON_ALNUM.sub(" ", query.lower())
    words: set[str] = set()
    for word in cleaned.split():
        word = _PATTERN_DIGITS.sub("#", word)
        if len(word) <= 2 or word in STOP_WORDS:
            continue
        words.add(word)
    return " ".join(sorted(words)) or "*"
