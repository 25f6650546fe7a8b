"""Capability clients and the LLM dispatch boundary.

Protocols:
    ChatCompletionProtocol, WebSearchProtocol, ImageGenerationProtocol,
    SnapshotStoreProtocol

Implementations:
    OpenAICompatibleChatClient, BraveSearchClient, HTTPImageClient,
    JsonFileSnapshotStore
"""

from gameshaper.clients.dispatch import (
    CallDispatcher,
    DispatchResult,
    RetryPolicy,
    is_internal_call_type,
    should_review,
)
from gameshaper.clients.images import HTTPImageClient
from gameshaper.clients.inference import OpenAICompatibleChatClient
from gameshaper.clients.protocols import (
    ChatCompletionProtocol,
    ImageGenerationProtocol,
    SnapshotStoreProtocol,
    WebSearchProtocol,
)
from gameshaper.clients.search import BraveSearchClient
from gameshaper.clients.snapshot_store import JsonFileSnapshotStore
from gameshaper.clients.streaming import accumulate_stream, iter_sse_text


__all__ = [
    "BraveSearchClient",
    "CallDispatcher",
    "ChatCompletionProtocol",
    "DispatchResult",
    "HTTPImageClient",
    "ImageGenerationProtocol",
    "JsonFileSnapshotStore",
    "OpenAICompatibleChatClient",
    "RetryPolicy",
    "SnapshotStoreProtocol",
    "WebSearchProtocol",
    "accumulate_stream",
    "is_internal_call_type",
    "iter_sse_text",
    "should_review",
]
