"""Entity Models.

An entity (node) is one unit of story-world state: a character, a location,
an item, a rule. Attributes are snake_case in Python and camelCase on the
wire (``longDescription``, ``updateImage``, ``imageSeed``), and either form
is accepted on input.

Pattern: Typed Data Transfer Objects (DTOs)
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Entity types never shown to the model in prompt context
HIDDEN_ENTITY_TYPES = frozenset({
    "image_generation",
    "image_generation_prompt",
    "image_generation_prompt_negative",
    "assistant",
})

# Image bookkeeping fields, stripped from prompt context
IMAGE_FIELDS = ("image", "update_image", "image_seed")


class Entity(BaseModel):
    """A node of the story world graph.

    Unknown extra fields are preserved, so imported worlds round-trip.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str = Field(..., min_length=1, description="Unique, immutable entity id")
    name: str = ""
    long_description: str = ""
    type: str = ""
    rules: str = ""
    parent: str | None = Field(default=None, description="Owning entity id")
    child: list[str] = Field(default_factory=list, description="Owned entity ids")
    image: str = Field(default="", description="Opaque image reference")
    update_image: bool = Field(default=False, description="Image regeneration requested")
    image_seed: int | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_prompt(self) -> str:
        """Render the entity for prompt context (no image bookkeeping)."""
        return (
            f'---\nid: "{self.id}"\nname: {self.name}\n'
            f"longDescription: {self.long_description}\ntype: {self.type}"
        )


def resolve_field_name(name: str) -> str:
    """Map a wire field name (``longDescription``) to its attribute name.

    Names that are neither an attribute nor an alias are returned unchanged
    and end up as extra fields.
    """
    if name in Entity.model_fields:
        return name
    for attr, info in Entity.model_fields.items():
        if info.alias == name:
            return attr
    return name


def wire_field_name(attr: str) -> str:
    """Inverse of resolve_field_name for declared attributes."""
    info = Entity.model_fields.get(attr)
    if info is not None and info.alias:
        return info.alias
    return attr


def format_entities_for_prompt(entities: list[Entity]) -> str:
    """Render visible entities as prompt context."""
    return "\n".join(
        entity.to_prompt()
        for entity in entities
        if entity.type not in HIDDEN_ENTITY_TYPES
    )


def sanitize_for_prompt(entity: Entity) -> dict[str, Any]:
    """Wire dict of an entity without image bookkeeping fields."""
    data = entity.to_wire()
    for attr in IMAGE_FIELDS:
        data.pop(wire_field_name(attr), None)
    return data
