"""
Ranking stages.

Key Components:
- QueryAnalyzer: Profiles the query (complexity, ambiguity, expected recall)
- KeywordScorer: Lexical relevance of snippets against query terms
- QueryExpander: Rule-based expansion into extra keyword terms
- Fusion + MMR: Weighted / RRF fusion and diversity selection
- Temporal decay: Age-based re-weighting with floor, cap and recency boost
- Adaptive controller: Decides which optional stages a query gets
- Reranker: Optional secondary ordering behind the async boundary
- Budgeter: Confidence filter and result / token budget

Architecture:
    Query + RankedLists
        │
        ▼
    ┌──────────────────┐
    │  QueryAnalyzer   │  ← Complexity, ambiguity, pattern
    └────────┬─────────┘
             │
             ▼
    ┌──────────────────┐
    │ AdaptiveControl  │  ← Expansion / re-rank / decay decision
    └────────┬─────────┘
             │
             ▼
    ┌──────────────────┐
    │  Fusion → Decay  │  ← Weighted or RRF, pinned + recency boosts
    │  → MMR → Rerank  │
    └────────┬─────────┘
             │
             ▼
    ┌──────────────────┐
    │     Budgeter     │  ← Confidence, count, tokens
    └────────┬─────────┘
             │
             ▼
    RankedItem[]
"""

from __future__ import annotations

from .adaptive_controller import apply_learning_advice, select_features
from .budgeter import (
    BudgetResult,
    apply_budget,
    estimate_tokens,
    filter_by_confidence,
    trim_to_budget,
)
from .keyword_scorer import (
    KeywordScorer,
    build_keyword_list,
    extract_keywords,
    keyword_score,
)
from .query_analyzer import QueryAnalyzer, analyze_query, query_pattern
from .query_expansion import (
    ExpansionResult,
    QueryExpander,
    alternative_phrasings,
    rule_based_expansion,
)
from .ranking_algorithms import (
    MMRResult,
    apply_pinned_boost,
    fuse,
    mmr_select,
    reciprocal_rank_fusion,
    weighted_fusion,
)
from .reranker import HeuristicReranker, Reranker, apply_rerank_order
from .temporal_decay import (
    apply_temporal_decay,
    calculate_decayed_score,
    calculate_freshness,
    calculate_optimal_decay_rate,
    calculate_recency_boost,
    resolve_age_days,
    resolve_decay_rate,
)

__all__ = [
    # Query analysis
    "QueryAnalyzer",
    "analyze_query",
    "query_pattern",
    # Keywords / expansion
    "KeywordScorer",
    "build_keyword_list",
    "extract_keywords",
    "keyword_score",
    "ExpansionResult",
    "QueryExpander",
    "alternative_phrasings",
    "rule_based_expansion",
    # Fusion / diversity
    "MMRResult",
    "apply_pinned_boost",
    "fuse",
    "mmr_select",
    "reciprocal_rank_fusion",
    "weighted_fusion",
    # Temporal
    "apply_temporal_decay",
    "calculate_decayed_score",
    "calculate_freshness",
    "calculate_optimal_decay_rate",
    "calculate_recency_boost",
    "resolve_age_days",
    "resolve_decay_rate",
    # Adaptive
    "apply_learning_advice",
    "select_features",
    # Re-rank
    "HeuristicReranker",
    "Reranker",
    "apply_rerank_order",
    # Budget
    "BudgetResult",
    "apply_budget",
    "estimate_tokens",
    "filter_by_confidence",
    "trim_to_budget",
]
