"""
LLM re-rank integration.

Async httpx client for an Ollama-compatible generate endpoint that returns
candidate ids in relevance order.
"""

from memory_rank.infrastructure.rerank.client import (
    LLMRerankClient,
    build_relevance_prompt,
    parse_ranking,
)

__all__ = [
    "LLMRerankClient",
    "build_relevance_prompt",
    "parse_ranking",
]
