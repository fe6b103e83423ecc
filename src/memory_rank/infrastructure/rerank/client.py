"""
LLM Re-rank Client

Async HTTP client for an Ollama-compatible ``/api/generate`` endpoint with:
- Relevance prompt listing the candidate snippets, numbered from 1
- JSON-array-of-indices response parsing
- Automatic retry with exponential backoff for transient failures
- Connection pooling via httpx

The pipeline wraps ``rerank`` in the timeout boundary; this client only
maps transport and protocol failures onto UpstreamError.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

import httpx

from memory_rank.core.async_utils import async_retry
from memory_rank.core.exceptions import UpstreamError
from memory_rank.domain.entities import FusedResult

logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[[\d,\s]*\]")
SNIPPET_PREVIEW_CHARS = 200


def build_relevance_prompt(query: str, items: Sequence[FusedResult]) -> str:
    """Prompt asking the model for a JSON array of 1-based indices, best first."""
    formatted = "\n\n".join(
        f"[{i}] {item.snippet[:SNIPPET_PREVIEW_CHARS]}{'...' if len(item.snippet) > SNIPPET_PREVIEW_CHARS else ''}"
        for i, item in enumerate(items, start=1)
    )
    return (
        "You are a relevance ranking assistant. Given the query and search results, "
        "rank them from most to least relevant.\n\n"
        f'QUERY: "{query}"\n\n'
        f"SEARCH RESULTS:\n{formatted}\n\n"
        "INSTRUCTIONS:\n"
        "1. Return ONLY a JSON array of result numbers in order of relevance (most relevant first)\n"
        "2. Example: [3, 1, 2]\n"
        "3. Base ranking on semantic relevance to the query\n"
        "4. Consider technical accuracy, recency, and completeness\n\n"
        "RANKING:"
    )


def parse_ranking(text: str, count: int) -> list[int]:
    """
    Extract 0-based positions from a model reply containing ``[3, 1, 2]``.

    Out-of-range and repeated numbers are ignored.

    Raises:
        UpstreamError: no usable JSON array in the reply
    """
    match = _JSON_ARRAY.search(text)
    if not match:
        raise UpstreamError("Re-rank reply contains no JSON index array", operation="llm_rerank", retryable=False)
    try:
        numbers = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise UpstreamError(f"Malformed re-rank index array: {e}", operation="llm_rerank", retryable=False) from e

    positions: list[int] = []
    for number in numbers:
        if isinstance(number, int) and not isinstance(number, bool) and 1 <= number <= count and number - 1 not in positions:
            positions.append(number - 1)

    if not positions:
        raise UpstreamError("Re-rank reply contains no valid indices", operation="llm_rerank", retryable=False)
    return positions


class LLMRerankClient:
    """
    Async client that re-ranks items with a local LLM.

    Example:
        client = LLMRerankClient(model="llama3.2")
        ids = await client.rerank("gateway setup", items)
        await client.close()
    """

    BASE_URL = "http://localhost:11434"
    DEFAULT_MODEL = "llama3.2"
    DEFAULT_TIMEOUT = 10.0
    TEMPERATURE = 0.1
    MAX_TOKENS = 100

    def __init__(
        self,
        base_url: str = BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the re-rank client.

        Args:
            base_url: Ollama-compatible server URL
            model: Model name sent with each request
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
                headers={"User-Agent": "memory-rank/0.1"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> LLMRerankClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @async_retry(max_attempts=3, base_delay=0.2)
    async def _generate(self, prompt: str) -> str:
        """POST one prompt; transient failures are retried by the decorator."""
        payload: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.TEMPERATURE, "num_predict": self.MAX_TOKENS},
        }
        client = await self._get_client()
        try:
            response = await client.post("/api/generate", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise UpstreamError(
                f"Re-rank endpoint returned HTTP {status}",
                operation="llm_rerank",
                retryable=status == 429 or status >= 500,
            ) from e
        except httpx.TimeoutException as e:
            raise UpstreamError("Re-rank request timed out", operation="llm_rerank") from e
        except httpx.TransportError as e:
            raise UpstreamError(f"Re-rank transport error: {e}", operation="llm_rerank") from e

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError("Re-rank endpoint returned invalid JSON", operation="llm_rerank", retryable=False) from e

        text = body.get("response") if isinstance(body, dict) else None
        if not isinstance(text, str):
            raise UpstreamError("Re-rank reply has no 'response' text", operation="llm_rerank", retryable=False)
        return text

    async def rerank(self, query: str, items: Sequence[FusedResult]) -> list[str]:
        """Return item ids in the model's relevance order."""
        if not items:
            return []
        text = await self._generate(build_relevance_prompt(query, items))
        positions = parse_ranking(text, len(items))
        logger.debug(f"LLM re-rank ({self._model}): {len(positions)}/{len(items)} positions returned")
        return [items[i].id for i in positions]
