"""
Infrastructure Layer - External Systems Integration

Contains:
- rerank: HTTP client for LLM re-ranking
"""

from .rerank import LLMRerankClient

__all__ = [
    "LLMRerankClient",
]
