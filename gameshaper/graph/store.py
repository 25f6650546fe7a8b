"""Entity Graph Store.

Owns the canonical entity list. apply_patch (through the patch protocol)
is the only path that edits entities; set_image and replace_all are the
narrow exceptions for image side effects and session restore.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from gameshaper.patches.protocol import apply_patch, prune_dangling_links
from gameshaper.schemas.entities import Entity
from gameshaper.schemas.patches import PatchRequest, PatchSummary

logger = logging.getLogger(__name__)

GraphListener = Callable[[list[Entity]], None]


class EntityGraphStore:
    """Canonical entity snapshot with read-only subscribers."""

    def __init__(self, entities: list[Entity] | None = None) -> None:
        self._entities: list[Entity] = [entity.model_copy(deep=True) for entity in entities or []]
        self._listeners: list[GraphListener] = []

    def snapshot(self) -> list[Entity]:
        """Deep copy of the current entities."""
        return [entity.model_copy(deep=True) for entity in self._entities]

    def get(self, entity_id: str) -> Entity | None:
        for entity in self._entities:
            if entity.id == entity_id:
                return entity.model_copy(deep=True)
        return None

    def __len__(self) -> int:
        return len(self._entities)

    def apply_patch(self, request: PatchRequest, *, prune_links: bool = False) -> PatchSummary:
        """Apply a patch request to the canonical snapshot.

        Args:
            request: Parsed patch request
            prune_links: Run link reconciliation right after the patch
        """
        entities, summary = apply_patch(self._entities, request)
        if prune_links:
            entities, _ = prune_dangling_links(entities)
        self._entities = entities
        logger.info(
            "Patch applied: created=%d updated=%d deleted=%d diagnostics=%d",
            len(summary.created), len(summary.updated), len(summary.deleted), len(summary.diagnostics),
        )
        self._notify()
        return summary

    def reconcile_links(self) -> int:
        """Prune parent/child references to deleted entities."""
        entities, pruned = prune_dangling_links(self._entities)
        if pruned:
            self._entities = entities
            self._notify()
        return pruned

    def set_image(self, entity_id: str, image_ref: str) -> bool:
        """Store a generated image and clear the regeneration flag."""
        for index, entity in enumerate(self._entities):
            if entity.id == entity_id:
                self._entities[index] = entity.model_copy(
                    update={"image": image_ref, "update_image": False}
                )
                self._notify()
                return True
        logger.warning("Image generated for unknown entity %s", entity_id)
        return False

    def replace_all(self, entities: list[Entity]) -> None:
        self._entities = [entity.model_copy(deep=True) for entity in entities]
        self._notify()

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Graph listener %r raised; continuing delivery", listener)
