"""JSON file snapshot store.

Writes the session blob atomically: a temporary file in the same directory
is renamed over the target.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from gameshaper.core.exceptions import SnapshotError


logger = logging.getLogger(__name__)


class JsonFileSnapshotStore:
    """Persist the session snapshot as one JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _write(self, blob: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".snapshot-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(blob)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def persist_snapshot(self, blob: str) -> None:
        try:
            await asyncio.to_thread(self._write, blob)
        except OSError as e:
            raise SnapshotError(f"Cannot write snapshot to {self.path}: {e}") from e
        logger.debug("Snapshot written to %s (%d bytes)", self.path, len(blob))

    async def load_snapshot(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            return await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except OSError as e:
            raise SnapshotError(f"Cannot read snapshot from {self.path}: {e}") from e
