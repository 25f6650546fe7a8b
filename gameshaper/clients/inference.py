"""OpenAI-Compatible Chat Completion Client.

HTTP client for any ``/chat/completions`` endpoint speaking the OpenAI
wire format (OpenAI, OpenRouter, local llama.cpp servers, ...).

Error classification:
    - 429 and 5xx responses, timeouts and connection failures raise a
      retryable LLMTransportError
    - other 4xx responses raise a non-retryable LLMTransportError

Retries are not done here: they belong to the dispatch boundary.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import BaseModel, Field

from gameshaper.clients.streaming import iter_sse_text
from gameshaper.core.exceptions import LLMTransportError


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


# =============================================================================
# Request/Response Models
# =============================================================================


class ChatMessage(BaseModel):
    """Chat message."""

    role: str = Field(..., description="Message role: user, system, assistant")
    content: str = Field(..., description="Message content")


class ChatCompletionRequest(BaseModel):
    """OpenAI-compatible chat completion request."""

    model: str = Field(..., description="Model ID")
    messages: list[ChatMessage] = Field(..., description="Conversation messages")
    stream: bool = Field(default=False)
    response_format: dict[str, Any] | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None


class ChatCompletionChoice(BaseModel):
    """Choice in chat completion response."""

    index: int = 0
    message: ChatMessage
    finish_reason: str | None = None


class Usage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """OpenAI-compatible chat completion response."""

    id: str = ""
    model: str = ""
    choices: list[ChatCompletionChoice]
    usage: Usage | None = None


# =============================================================================
# Client
# =============================================================================


class OpenAICompatibleChatClient:
    """HTTP client for OpenAI-compatible chat completions.

    Usage:
        client = OpenAICompatibleChatClient("https://api.openai.com/v1", api_key="sk-...")
        text = await client.complete_chat([{"role": "user", "content": "Hello"}])
        await client.close()

    Attributes:
        base_url: Base URL of the API (including the version segment)
        default_model: Model used when the caller gives none
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        default_model: str = "gpt-4o",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the chat client.

        Args:
            base_url: Base URL of the API
            api_key: Bearer token, omitted from headers when empty
            default_model: Model used when complete_chat gets no model
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout
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

    def _build_request(
        self,
        messages: list[dict[str, str]],
        model: str | None,
        response_format: dict[str, Any] | None,
        stream: bool,
        options: dict[str, Any],
    ) -> dict[str, Any]:
        request = ChatCompletionRequest(
            model=model or self.default_model,
            messages=[
                ChatMessage(role=msg.get("role", "user"), content=msg.get("content", ""))
                for msg in messages
            ],
            stream=stream,
            response_format=response_format,
            **{key: value for key, value in options.items() if key in ChatCompletionRequest.model_fields},
        )
        return request.model_dump(exclude_none=True)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        status = response.status_code
        raise LLMTransportError(
            f"Completion request failed with HTTP {status}",
            status_code=status,
            retryable=status in RETRYABLE_STATUS_CODES,
        )

    async def complete_chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        response_format: dict[str, Any] | None = None,
        stream: bool = False,
        **options: Any,
    ) -> str | AsyncIterator[str]:
        """Generate a chat completion.

        Returns:
            Completion text, or an async iterator of text chunks when ``stream``

        Raises:
            LLMTransportError: On HTTP or network failure
        """
        payload = self._build_request(messages, model, response_format, stream, options)
        logger.info(
            "Calling chat completions: model=%s, messages=%d, stream=%s",
            payload["model"], len(messages), stream,
        )

        if stream:
            return self._stream(payload)

        client = self._get_client()
        try:
            response = await client.post("/chat/completions", json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise LLMTransportError(f"Completion request failed: {e}", retryable=True) from e
        self._raise_for_status(response)

        completion = ChatCompletionResponse.model_validate(response.json())
        if not completion.choices:
            raise LLMTransportError("No completion choices returned")

        logger.info(
            "Completion done: tokens=%s, model=%s",
            completion.usage.total_tokens if completion.usage else "unknown",
            completion.model,
        )
        return completion.choices[0].message.content

    async def _stream(self, payload: dict[str, Any]) -> AsyncIterator[str]:
        client = self._get_client()
        try:
            async with client.stream("POST", "/chat/completions", json=payload) as response:
                self._raise_for_status(response)
                async for chunk in iter_sse_text(response.aiter_lines()):
                    yield chunk
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise LLMTransportError(f"Completion stream failed: {e}", retryable=True) from e
