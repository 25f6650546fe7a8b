"""Streamed text helpers.

The completion capability may return text incrementally. The core always
accumulates the whole text before parsing.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


async def accumulate_stream(chunks: AsyncIterable[str]) -> str:
    """Join an async stream of text chunks into one string.

    Cancelling the awaiting task stops consumption at the next chunk.
    """
    parts: list[str] = []
    async for chunk in chunks:
        if chunk:
            parts.append(chunk)
    return "".join(parts)


async def iter_sse_text(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Decode OpenAI-compatible server-sent events into content deltas.

    Yields the ``choices[0].delta.content`` of every ``data:`` event until
    ``[DONE]``. Non-data lines and undecodable events are skipped.
    """
    async for line in lines:
        line = line.strip()
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        data = line[len(SSE_DATA_PREFIX):].strip()
        if data == SSE_DONE:
            break
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable stream event: %s", data[:100])
            continue
        choices = event.get("choices") or []
        if not choices:
            continue
        content = (choices[0].get("delta") or {}).get("content")
        if content:
            yield content
