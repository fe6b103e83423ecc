"""
KeywordScorer - lexical relevance of a snippet against query terms.

Cheap substring matching, no index:
    score = min(1, total_occurrences / (term_count × sqrt(len(snippet) / length_scale)))

The length divisor penalizes long snippets; ``length_scale`` (default 100)
sets the snippet length at which the penalty is neutral.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable

from memory_rank.domain.entities import CandidateItem, RankedList

logger = logging.getLogger(__name__)

DEFAULT_LENGTH_SCALE = 100.0
MIN_KEYWORD_LENGTH = 4

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

STOP_WORDS: frozenset[str] = frozenset(
    {
        "about", "above", "after", "again", "against", "all", "also", "and",
        "any", "are", "back", "because", "been", "before", "being", "below",
        "between", "both", "but", "can", "come", "could", "did", "does",
        "doing", "down", "during", "each", "even", "every", "few", "first",
        "for", "from", "further", "good", "great", "had", "has", "have",
        "having", "her", "here", "hers", "herself", "him", "himself", "his",
        "how", "into", "its", "itself", "just", "know", "let", "life", "like",
        "make", "might", "more", "most", "myself", "never", "nor", "once",
        "only", "other", "ought", "our", "ours", "ourselves", "out", "over",
        "own", "said", "same", "shall", "she", "should", "some", "state",
        "still", "such", "take", "than", "that", "the", "their", "theirs",
        "them", "themselves", "then", "there", "these", "they", "think",
        "this", "those", "through", "time", "too", "under", "until", "very",
        "was", "well", "were", "what", "when", "where", "which", "while",
        "who", "whom", "why", "will", "with", "within", "without", "work",
        "would", "year", "you", "your", "yours", "yourself", "yourselves",
    }
)  # fmt: skip


def extract_keywords(query: str) -> list[str]:
    """
    Significant query words: lowercase alphanumerics longer than 3 characters
    that are not stop words, deduplicated in first-seen order.

    Example:
        >>> extract_keywords("How do I set up the Gateway?")
        ['gateway']
    """
    cleaned = _NON_ALNUM.sub(" ", query.lower())
    keywords: list[str] = []
    for word in cleaned.split():
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    return keywords


def _normalize_terms(terms: Iterable[str]) -> list[str]:
    normalized: list[str] = []
    for term in terms:
        term = term.strip().lower()
        if term and term not in normalized:
            normalized.append(term)
    return normalized


def keyword_score(snippet: str, terms: Iterable[str], length_scale: float = DEFAULT_LENGTH_SCALE) -> float:
    """
    Keyword relevance of ``snippet`` for ``terms``, in [0, 1].

    Occurrences are case-insensitive, non-overlapping substring counts.
    Returns 0 for an empty term set or an empty snippet.
    """
    normalized = _normalize_terms(terms)
    if not normalized or not snippet:
        return 0.0

    text = snippet.lower()
    matches = sum(text.count(term) for term in normalized)
    if matches == 0:
        return 0.0

    divisor = len(normalized) * math.sqrt(len(text) / length_scale)
    return min(1.0, matches / divisor)


def build_keyword_list(
    candidates: Iterable[CandidateItem],
    terms: Iterable[str],
    source: str = "keyword",
    length_scale: float = DEFAULT_LENGTH_SCALE,
) -> RankedList:
    """
    Score every unique candidate snippet and keep those with a positive score.

    The first occurrence of an id wins; metadata is carried over unchanged.
    """
    normalized = _normalize_terms(terms)
    scored: list[CandidateItem] = []
    seen: set[str] = set()

    for candidate in candidates:
        if candidate.id in seen:
            continue
        seen.add(candidate.id)
        score = keyword_score(candidate.snippet, normalized, length_scale)
        if score > 0:
            scored.append(CandidateItem(candidate.id, candidate.snippet, score, candidate.metadata))

    logger.debug(f"Keyword list: {len(scored)}/{len(seen)} candidates matched {len(normalized)} terms")
    return RankedList(source, scored)


class KeywordScorer:
    """
    Bundles a fixed set of query terms with the scoring functions.

    Usage:
        scorer = KeywordScorer.from_query("gateway setup")
        scorer.score("Configured the gateway on port 18789")  # > 0
        keyword_list = scorer.rank(candidates)
    """

    def __init__(self, terms: Iterable[str], length_scale: float = DEFAULT_LENGTH_SCALE):
        self.terms: tuple[str, ...] = tuple(_normalize_terms(terms))
        self.length_scale = length_scale

    @classmethod
    def from_query(cls, query: str, length_scale: float = DEFAULT_LENGTH_SCALE) -> KeywordScorer:
        return cls(extract_keywords(query), length_scale)

    def score(self, snippet: str) -> float:
        return keyword_score(snippet, self.terms, self.length_scale)

    def rank(self, candidates: Iterable[CandidateItem], source: str = "keyword") -> RankedList:
        return build_keyword_list(candidates, self.terms, source, self.length_scale)

    def __repr__(self) -> str:
        return f"KeywordScorer(terms={list(self.terms)!r})"
