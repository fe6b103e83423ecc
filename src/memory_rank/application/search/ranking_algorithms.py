"""
Ranking Algorithms for Hybrid Memory Retrieval.

This module implements the fusion and diversification algorithms of the
ranking pipeline:

1. **Weighted-linear fusion** — Score-based fusion
   - Each source is max-normalized to [0, 1], then weighted and summed
   - Default weights: semantic 0.7, keyword 0.3

2. **Reciprocal Rank Fusion (RRF)** — Rank-based fusion
   - Combines sources by best rank, without score calibration
   - Formula: RRF(d) = Σ_s w_s / (k + rank_s(d) + 1), k=60, rank 0-based

3. **Maximal Marginal Relevance (MMR)** — Result diversification
   - Iteratively selects results balancing relevance and novelty
   - Uses snippet token Jaccard similarity (no embeddings needed)
   - Formula: MMR(d) = λ·Rel(d) - (1-λ)·max Sim(d,d')

References:
    - Cormack et al. (2009). "Reciprocal Rank Fusion outperforms Condorcet and individual Rank Learning Methods"
    - Carbonell & Goldstein (1998). "The use of MMR, diversity-based reranking for reordering documents"

Architecture:
    These algorithms are stateless functions called by the RankingPipeline.
    Both fusion strategies return the same FusedResult schema: exactly one
    record per unique id, sorted by fused score descending, ties by id.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from memory_rank.application.pipeline.config import FusionConfig, FusionStrategy, SourceWeights
from memory_rank.domain.entities import FusedResult, Provenance, RankedList, sort_by_score

logger = logging.getLogger(__name__)


# =============================================================================
# Weighted-Linear Fusion
# =============================================================================

_DEFAULT_WEIGHTS = SourceWeights({"semantic": 0.7, "keyword": 0.3})
_HYBRID_KEYWORD_THRESHOLD = 0.3  # keywordNorm above this tags a result "hybrid"


def _normalized(score: float, max_score: float) -> float:
    """Max-normalize one score; non-positive maxima and negative scores give 0."""
    if max_score <= 0:
        return 0.0
    return max(score, 0.0) / max_score


def _group_by_source(lists: Sequence[RankedList]) -> dict[str, list[RankedList]]:
    """Lists sharing a source tag, in order of first appearance."""
    groups: dict[str, list[RankedList]] = {}
    for ranked_list in lists:
        groups.setdefault(ranked_list.source, []).append(ranked_list)
    return groups


def _merge_records(lists: Sequence[RankedList], provenance: str | None = None) -> dict[str, FusedResult]:
    """One empty record per unique id; the first list containing an id wins snippet/metadata."""
    merged: dict[str, FusedResult] = {}
    for ranked_list in lists:
        for item in ranked_list:
            if item.id not in merged:
                merged[item.id] = FusedResult(
                    id=item.id,
                    score=0.0,
                    provenance=provenance or ranked_list.source,
                    snippet=item.snippet,
                    metadata=item.metadata,
                )
    return merged


def _record_best_ranks(merged: dict[str, FusedResult], groups: dict[str, list[RankedList]]) -> None:
    for source, group in groups.items():
        for ranked_list in group:
            for rank, item in enumerate(ranked_list):
                ranks = merged[item.id].source_ranks
                ranks[source] = min(ranks.get(source, rank), rank)


def weighted_fusion(
    lists: Sequence[RankedList],
    weights: SourceWeights | None = None,
) -> list[FusedResult]:
    """
    Fuse ranked lists by weighted sum of max-normalized scores.

    fused(d) = Σ_s norm_s(d) × weight(s)

    Lists are grouped by source tag. Each source is normalized by its
    maximum across all of its lists, and an id found in several lists of
    one source keeps its best normalized score, so every source
    contributes at most once per id.

    Provenance:
        "hybrid"   keyword contribution (normalized) above 0.3
        "keyword"  id found only in keyword lists
        "semantic" otherwise

    Args:
        lists: Ranked lists in priority order (first list wins snippet/metadata)
        weights: Per-source weights (default semantic 0.7, keyword 0.3)

    Returns:
        One FusedResult per unique id, sorted by score desc, id asc
    """
    weights = weights or _DEFAULT_WEIGHTS
    merged = _merge_records(lists, Provenance.SEMANTIC.value)
    groups = _group_by_source(lists)

    for source, group in groups.items():
        max_score = max(ranked_list.max_score for ranked_list in group)
        for ranked_list in group:
            for item in ranked_list:
                scores = merged[item.id].source_scores
                scores[source] = max(scores.get(source, 0.0), _normalized(item.score, max_score))
    _record_best_ranks(merged, groups)

    for result in merged.values():
        result.score = sum(norm * weights.weight_for(source) for source, norm in result.source_scores.items())
        result.original_score = result.score
        keyword_norm = result.source_scores.get(Provenance.KEYWORD.value, 0.0)
        if keyword_norm > _HYBRID_KEYWORD_THRESHOLD:
            result.provenance = Provenance.HYBRID.value
        elif set(result.source_scores) == {Provenance.KEYWORD.value}:
            result.provenance = Provenance.KEYWORD.value
        else:
            result.provenance = Provenance.SEMANTIC.value

    return sort_by_score(list(merged.values()))


# =============================================================================
# Reciprocal Rank Fusion (RRF)
# =============================================================================

_RRF_K = 60  # Standard constant from Cormack et al.


def reciprocal_rank_fusion(
    lists: Sequence[RankedList],
    k: float = _RRF_K,
    weights: SourceWeights | None = None,
) -> list[FusedResult]:
    """
    Apply Reciprocal Rank Fusion across ranked lists.

    RRF formula:
        RRF(d) = Σ_s w_s × 1/(k + rank_s(d) + 1)

    where s iterates over the sources containing d and rank_s(d) is the
    best 0-based position of d among that source's lists. Sources that do
    not contain d contribute nothing. Smaller k makes the fusion more
    top-heavy.

    Args:
        lists: Ranked lists in priority order (first list wins snippet/metadata)
        k: RRF constant (default 60)
        weights: Per-source weights (default 1.0 for every source)

    Returns:
        One FusedResult per unique id, sorted by score desc, id asc.
        Provenance is "hybrid" for ids found under two or more sources,
        otherwise the tag of the single source containing the id.
    """
    weights = weights or SourceWeights()
    merged = _merge_records(lists)
    _record_best_ranks(merged, _group_by_source(lists))

    for result in merged.values():
        result.source_scores = {
            source: weights.weight_for(source) / (k + rank + 1) for source, rank in result.source_ranks.items()
        }
        result.score = sum(result.source_scores.values())
        result.original_score = result.score
        if len(result.source_ranks) >= 2:
            result.provenance = Provenance.HYBRID.value

    return sort_by_score(list(merged.values()))


def fuse(
    lists: Sequence[RankedList],
    config: FusionConfig,
    strategy: FusionStrategy | None = None,
    weights: SourceWeights | None = None,
) -> list[FusedResult]:
    """Dispatch to the configured (or explicitly requested) fusion strategy.

    ``weights`` replaces the configured source weights for this call.
    """
    strategy = strategy or config.strategy
    weights = weights or config.weights_for(strategy)

    if strategy is FusionStrategy.RRF:
        results = reciprocal_rank_fusion(lists, k=config.rrf_k, weights=weights)
    else:
        results = weighted_fusion(lists, weights)

    logger.debug(f"{strategy.value} fusion: {len(lists)} lists → {len(results)} unique results")
    return results


def apply_pinned_boost(results: Sequence[FusedResult], factor: float = 1.2) -> list[FusedResult]:
    """Multiply the score of pinned results by ``factor`` and re-sort."""
    boosted = [r.with_score(r.score * factor) if r.is_pinned else r for r in results]
    return sort_by_score(boosted)


# =============================================================================
# Maximal Marginal Relevance (MMR)
# =============================================================================


@dataclass
class MMRResult:
    """Result of MMR selection."""

    selected: list[FusedResult]
    mmr_scores: dict[str, float]  # id → MMR score at selection time
    avg_pairwise_distance: float  # Average pairwise distance in selected set

    def __len__(self) -> int:
        return len(self.selected)


SimilarityFn = Callable[[FusedResult, FusedResult], float]


def snippet_similarity(a: FusedResult, b: FusedResult) -> float:
    """Token-set Jaccard overlap of lowercased whitespace-split snippets."""
    return _jaccard_similarity(_token_set(a.snippet), _token_set(b.snippet))


def mmr_select(
    candidates: Sequence[FusedResult],
    *,
    lambda_mmr: float = 0.5,
    max_results: int = 10,
    similarity: SimilarityFn | None = None,
) -> MMRResult:
    """
    Greedy Maximal Marginal Relevance selection.

    MMR iteratively selects results that balance relevance and novelty:
        MMR(d) = λ × Rel(d) - (1-λ) × max_{d' ∈ S} Sim(d, d')

    Relevance is the candidate score normalized by the best score.
    Candidates are ordered by score desc, id asc; the best one is always
    selected first and ties go to the earliest candidate in that order.
    With λ = 1.0 the output is the plain relevance order.

    Args:
        candidates: Fused results (any order)
        lambda_mmr: Balance between relevance (1.0) and diversity (0.0)
        max_results: Upper bound on the number of selected results
        similarity: Pairwise similarity in [0, 1] (default snippet Jaccard)

    Returns:
        MMRResult with the selected subset, never larger than the input
    """
    if not candidates or max_results <= 0:
        return MMRResult(selected=[], mmr_scores={}, avg_pairwise_distance=1.0)

    ordered = sort_by_score(list(candidates))
    n = len(ordered)
    limit = min(max_results, n)

    if similarity is None:
        token_sets = [_token_set(c.snippet) for c in ordered]

        def sim(i: int, j: int) -> float:
            return _jaccard_similarity(token_sets[i], token_sets[j])
    else:

        def sim(i: int, j: int) -> float:
            return similarity(ordered[i], ordered[j])

    # Normalize relevance to [0, 1]
    max_rel = ordered[0].score
    if max_rel > 0:
        relevance = [max(c.score, 0.0) / max_rel for c in ordered]
    else:
        relevance = [c.score for c in ordered]

    selected_indices = [0]
    mmr_scores = {ordered[0].id: relevance[0]}
    # Running max similarity of each candidate to the selected set
    max_sim = [0.0] * n
    remaining = list(range(1, n))

    while remaining and len(selected_indices) < limit:
        last = selected_indices[-1]
        best_idx = -1
        best_mmr = -float("inf")

        for idx in remaining:
            s = sim(idx, last)
            if s > max_sim[idx]:
                max_sim[idx] = s
            mmr = lambda_mmr * relevance[idx] - (1 - lambda_mmr) * max_sim[idx]
            if mmr > best_mmr:
                best_mmr = mmr
                best_idx = idx

        selected_indices.append(best_idx)
        remaining.remove(best_idx)
        mmr_scores[ordered[best_idx].id] = best_mmr

    selected = [ordered[i] for i in selected_indices]
    avg_dist = _average_pairwise_distance(selected_indices, sim)

    logger.debug(f"MMR (λ={lambda_mmr}): selected {len(selected)}/{n}, avg distance {avg_dist:.3f}")
    return MMRResult(selected=selected, mmr_scores=mmr_scores, avg_pairwise_distance=avg_dist)


# =============================================================================
# Utility Functions
# =============================================================================


def _token_set(text: str) -> set[str]:
    return set(text.lower().split())


def _jaccard_similarity(set_a: set[str], set_b: set[str]) -> float:
    """Jaccard similarity coefficient: |A ∩ B| / |A ∪ B|, 0 if either is empty."""
    if not set_a or not set_b:
        return 0.0
    intersection = len(set_a & set_b)
    union = len(set_a | set_b)
    return intersection / union if union > 0 else 0.0


def _average_pairwise_distance(indices: list[int], sim: Callable[[int, int], float]) -> float:
    """Average pairwise distance (1 - similarity) in a selected set."""
    n = len(indices)
    if n < 2:
        return 1.0

    total_distance = 0.0
    count = 0
    for i in range(n):
        for j in range(i + 1, n):
            total_distance += 1.0 - sim(indices[i], indices[j])
            count += 1

    return total_distance / count if count > 0 else 1.0
