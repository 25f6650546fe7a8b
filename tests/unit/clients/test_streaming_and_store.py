"""Tests for stream helpers and the JSON file snapshot store."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from gameshaper.clients.protocols import SnapshotStoreProtocol
from gameshaper.clients.snapshot_store import JsonFileSnapshotStore
from gameshaper.clients.streaming import accumulate_stream, iter_sse_text


async def _aiter(items: list[str]) -> AsyncIterator[str]:
    for item in items:
        yield item


class TestAccumulateStream:
    @pytest.mark.asyncio
    async def test_joins_chunks_in_order(self) -> None:
        assert await accumulate_stream(_aiter(["a ", "", "gleaming ", "longsword"])) == "a gleaming longsword"

    @pytest.mark.asyncio
    async def test_empty_stream(self) -> None:
        assert await accumulate_stream(_aiter([])) == ""


class TestIterSseText:
    """Tests for iter_sse_text."""

    @pytest.mark.asyncio
    async def test_stops_at_done_and_skips_noise(self) -> None:
        lines = [
            ": keep-alive",
            'data: {"choices": [{"delta": {"content": "one"}}]}',
            "data: not json",
            'data: {"choices": []}',
            'data: {"choices": [{"delta": {"content": " two"}}]}',
            "data: [DONE]",
            'data: {"choices": [{"delta": {"content": " ignored"}}]}',
        ]

        chunks = [chunk async for chunk in iter_sse_text(_aiter(lines))]

        assert chunks == ["one", " two"]


class TestJsonFileSnapshotStore:
    """Tests for JsonFileSnapshotStore."""

    def test_implements_protocol(self, tmp_path: Path) -> None:
        assert isinstance(JsonFileSnapshotStore(tmp_path / "s.json"), SnapshotStoreProtocol)

    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path: Path) -> None:
        assert await JsonFileSnapshotStore(tmp_path / "absent.json").load_snapshot() is None

    @pytest.mark.asyncio
    async def test_persist_then_load(self, tmp_path: Path) -> None:
        store = JsonFileSnapshotStore(tmp_path / "nested" / "session.json")

        await store.persist_snapshot('{"entities": []}')
        await store.persist_snapshot('{"entities": [1]}')

        assert await store.load_snapshot() == '{"entities": [1]}'
        leftovers = [p.name for p in (tmp_path / "nested").iterdir() if p.name != "session.json"]
        assert leftovers == []
