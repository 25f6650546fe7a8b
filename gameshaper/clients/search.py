"""Brave Web Search Client.

HTTP client for the Brave Search API (``GET /web/search``). Results are
sliced to ``max_results`` and mapped to SearchResult.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gameshaper.core.exceptions import SearchClientError
from gameshaper.schemas.pipeline import SearchResult


logger = logging.getLogger(__name__)


class BraveSearchClient:
    """HTTP client for Brave web search.

    Example:
        >>> client = BraveSearchClient(api_key="...")
        >>> results = await client.web_search("medieval swords", max_results=5)
        >>> await client.close()
    """

    def __init__(
        self,
        base_url: str = "https://api.search.brave.com/res/v1",
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client (lazy initialization)."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["X-Subscription-Token"] = self._api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Release HTTP client resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def web_search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        """Run one web search.

        Args:
            query: Search query
            max_results: Maximum number of results returned

        Returns:
            Up to ``max_results`` results, possibly empty

        Raises:
            SearchClientError: On HTTP or network failure, or an unreadable body
        """
        if not query.strip():
            return []

        client = self._get_client()
        try:
            response = await client.get(
                "/web/search",
                params={"q": query, "count": max_results},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SearchClientError(
                f"Search failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            raise SearchClientError(f"Search request failed: {e}") from e

        try:
            data: dict[str, Any] = response.json()
            raw_results = (data.get("web") or {}).get("results") or []
            results = [
                SearchResult(
                    title=item.get("title", ""),
                    url=item.get("url", ""),
                    description=item.get("description", ""),
                )
                for item in raw_results[:max_results]
            ]
        except (ValueError, AttributeError, TypeError) as e:
            raise SearchClientError(f"Search returned an unreadable body: {e}") from e
        logger.info("Search '%s' returned %d results", query[:80], len(results))
        return results
