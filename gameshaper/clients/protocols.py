"""Capability Protocols.

Duck typing protocols for the external capabilities the core consumes.
Enables FakeClient substitution in tests; the core never imports a concrete
client.

Pattern: Protocol duck typing
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

from gameshaper.schemas.pipeline import SearchResult


@runtime_checkable
class ChatCompletionProtocol(Protocol):
    """Protocol for an LLM chat completion provider.

    Methods:
        complete_chat: Complete a conversation, whole or streamed
        close: Release client resources
    """

    async def complete_chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        response_format: dict[str, Any] | None = None,
        stream: bool = False,
        **options: Any,
    ) -> str | AsyncIterator[str]:
        """Complete a chat conversation.

        Args:
            messages: Role/content message dicts
            model: Model hint, provider default when None
            response_format: e.g. {"type": "json_object"}
            stream: Return an async iterator of text chunks instead of text
            **options: temperature, max_tokens, ...

        Returns:
            Full completion text, or an async iterator of chunks when streaming

        Raises:
            LLMTransportError: On provider or network failure
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...


@runtime_checkable
class WebSearchProtocol(Protocol):
    """Protocol for a web search provider."""

    async def web_search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        """Search the web.

        Raises:
            SearchClientError: On provider failure
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...


@runtime_checkable
class ImageGenerationProtocol(Protocol):
    """Protocol for an image synthesis provider."""

    async def request_image(self, prompt: str, seed: int | None = None) -> str:
        """Generate an image and return an opaque image reference.

        Raises:
            ImageClientError: On provider failure
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...


@runtime_checkable
class SnapshotStoreProtocol(Protocol):
    """Protocol for opaque session snapshot storage.

    One blob in, one blob out: no partial persistence.
    """

    async def persist_snapshot(self, blob: str) -> None:
        ...

    async def load_snapshot(self) -> str | None:
        """Return the last persisted blob, or None if nothing was saved."""
        ...
