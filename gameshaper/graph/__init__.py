"""Entity graph store and image side effects."""

from gameshaper.graph.images import ImageBatchResult, ImageRegenerationQueue, build_image_prompt
from gameshaper.graph.store import EntityGraphStore, GraphListener


__all__ = [
    "EntityGraphStore",
    "GraphListener",
    "ImageBatchResult",
    "ImageRegenerationQueue",
    "build_image_prompt",
]
