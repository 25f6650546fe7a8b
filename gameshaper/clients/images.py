"""HTTP Image Generation Client.

Client for an image synthesis endpoint that accepts
``POST /images/generations {"prompt", "seed"?}`` and answers with
``{"data": [{"url": ...} | {"b64_json": ...}]}`` (OpenAI images format).
The returned url, or a ``data:`` URI built from the base64 payload, is the
opaque image reference.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gameshaper.core.exceptions import ImageClientError


logger = logging.getLogger(__name__)


class HTTPImageClient:
    """HTTP client for image generation."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 180.0,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.model = model
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client (lazy initialization)."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
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

    async def request_image(self, prompt: str, seed: int | None = None) -> str:
        """Generate one image.

        Raises:
            ImageClientError: On HTTP failure or an empty answer
        """
        payload: dict[str, Any] = {"prompt": prompt, "n": 1}
        if seed is not None:
            payload["seed"] = seed
        if self.model:
            payload["model"] = self.model

        client = self._get_client()
        try:
            response = await client.post("/images/generations", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ImageClientError(
                f"Image generation failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            raise ImageClientError(f"Image request failed: {e}") from e

        items = response.json().get("data") or []
        if not items:
            raise ImageClientError("Image generation returned no data")
        item = items[0]
        if item.get("url"):
            return item["url"]
        if item.get("b64_json"):
            return f"data:image/png;base64,{item['b64_json']}"
        raise ImageClientError("Image generation returned neither url nor b64_json")
