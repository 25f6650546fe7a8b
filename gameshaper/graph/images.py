"""Image Regeneration Queue.

Side-effect processor for entities flagged with ``update_image``. Images
are requested one at a time, never inline with a patch. Each batch is capped
at ``batch_limit``; entities beyond the cap keep their flag and are picked
up by the next batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from gameshaper.clients.protocols import ImageGenerationProtocol
from gameshaper.core.exceptions import ImageClientError
from gameshaper.core.prompts import format_prompt, get_prompt
from gameshaper.graph.store import EntityGraphStore
from gameshaper.ledger.call_ledger import CallLedger
from gameshaper.schemas.entities import Entity

logger = logging.getLogger(__name__)

IMAGE_EVENT_TYPE = "internal_image_generation"


@dataclass
class ImageBatchResult:
    """Outcome of one regeneration batch."""

    generated: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    deferred: list[str] = field(default_factory=list)


def build_image_prompt(entity: Entity) -> str:
    return format_prompt(get_prompt("image_prompt"), {
        "name": entity.name,
        "type": entity.type or "Story",
        "long_description": entity.long_description,
    }).strip()


class ImageRegenerationQueue:
    """Sequentially regenerates images for flagged entities."""

    def __init__(
        self,
        client: ImageGenerationProtocol,
        graph: EntityGraphStore,
        ledger: CallLedger,
        batch_limit: int = 10,
    ) -> None:
        self._client = client
        self._graph = graph
        self._ledger = ledger
        self._batch_limit = batch_limit
        self._lock = asyncio.Lock()

    def flagged(self) -> list[Entity]:
        return [entity for entity in self._graph.snapshot() if entity.update_image]

    async def process_pending(self) -> ImageBatchResult:
        """Regenerate images for up to ``batch_limit`` flagged entities."""
        async with self._lock:
            result = ImageBatchResult()
            pending = self.flagged()
            batch, deferred = pending[:self._batch_limit], pending[self._batch_limit:]
            if deferred:
                result.deferred = [entity.id for entity in deferred]
                logger.warning(
                    "Image batch limit %d reached; %d entities stay flagged: %s",
                    self._batch_limit, len(deferred), ", ".join(result.deferred),
                )

            for entity in batch:
                prompt = build_image_prompt(entity)
                call_id = self._ledger.begin(IMAGE_EVENT_TYPE, f"Image for {entity.id}: {prompt}")
                try:
                    image_ref = await self._client.request_image(prompt, seed=entity.image_seed)
                except ImageClientError as e:
                    logger.warning("Image generation failed for %s: %s", entity.id, e.message)
                    self._ledger.fail(call_id, e.message)
                    result.failed[entity.id] = e.message
                    continue
                except asyncio.CancelledError:
                    self._ledger.fail(call_id, "cancelled")
                    raise
                self._graph.set_image(entity.id, image_ref)
                self._ledger.complete(call_id, image_ref[:200])
                result.generated[entity.id] = image_ref

            return result
