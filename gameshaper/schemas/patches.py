"""Patch Protocol Models.

A PatchRequest describes field-level edits to the entity graph:

- new_entities: entities to create (``n_nodes`` on the wire)
- updates: entity id -> EntityUpdate (``u_nodes``)
- deletions: entity ids to remove (``d_nodes``)

Each field of an EntityUpdate carries exactly one FieldOp, a tagged union
of Replace (``rpl``) and TextDiff (``df``). The ``img_upd`` flag lives
beside the field map as ``image_regenerate``.

Pattern: Tagged union validated at the parse boundary
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from gameshaper.schemas.entities import Entity


# =============================================================================
# Field Operations
# =============================================================================


class TextDiffInstruction(BaseModel):
    """Replace the ``occurrence``-th literal match of ``find`` with ``replace``.

    An empty ``find`` appends ``replace`` to the field.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    find: str = Field(default="", validation_alias=AliasChoices("find", "prev_txt"))
    replace: str = Field(default="", validation_alias=AliasChoices("replace", "next_txt"))
    occurrence: int = Field(default=1, ge=1, validation_alias=AliasChoices("occurrence", "occ"))

    def to_wire(self) -> dict[str, Any]:
        return {"prev_txt": self.find, "next_txt": self.replace, "occ": self.occurrence}


class Replace(BaseModel):
    """Whole-field overwrite."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["rpl"] = "rpl"
    value: Any = None

    def to_wire(self) -> dict[str, Any]:
        return {"rpl": self.value}


class TextDiff(BaseModel):
    """Ordered list of literal find/replace instructions."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["df"] = "df"
    instructions: list[TextDiffInstruction] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return {"df": [instruction.to_wire() for instruction in self.instructions]}


FieldOp = Annotated[Union[Replace, TextDiff], Field(discriminator="kind")]


# =============================================================================
# Patch Request
# =============================================================================


class EntityUpdate(BaseModel):
    """Field operations for one existing entity."""

    fields: dict[str, FieldOp] = Field(default_factory=dict)
    image_regenerate: bool | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: op.to_wire() for name, op in self.fields.items()}
        if self.image_regenerate is not None:
            data["img_upd"] = self.image_regenerate
        return data


class QuarantinedOp(BaseModel):
    """A payload fragment rejected at the parse boundary."""

    entity_id: str | None = None
    field: str | None = None
    reason: str
    payload: Any = None


class PatchRequest(BaseModel):
    """A set of entity creations, field updates and deletions."""

    new_entities: list[Entity] = Field(default_factory=list)
    updates: dict[str, EntityUpdate] = Field(default_factory=dict)
    deletions: set[str] = Field(default_factory=set)
    quarantined: list[QuarantinedOp] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.new_entities or self.updates or self.deletions)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the ``n_nodes``/``u_nodes``/``d_nodes`` wire shape."""
        data: dict[str, Any] = {}
        if self.new_entities:
            data["n_nodes"] = [entity.to_wire() for entity in self.new_entities]
        if self.updates:
            data["u_nodes"] = {
                entity_id: update.to_wire() for entity_id, update in self.updates.items()
            }
        if self.deletions:
            data["d_nodes"] = sorted(self.deletions)
        return data

    def merged_with(self, other: PatchRequest) -> PatchRequest:
        """Combine two requests; field ops of ``other`` win on the same key."""
        updates = {key: value.model_copy(deep=True) for key, value in self.updates.items()}
        for entity_id, update in other.updates.items():
            if entity_id in updates:
                current = updates[entity_id]
                merged_fields = {**current.fields, **update.fields}
                flag = (
                    update.image_regenerate
                    if update.image_regenerate is not None
                    else current.image_regenerate
                )
                updates[entity_id] = EntityUpdate(fields=merged_fields, image_regenerate=flag)
            else:
                updates[entity_id] = update.model_copy(deep=True)
        return PatchRequest(
            new_entities=[*self.new_entities, *other.new_entities],
            updates=updates,
            deletions=self.deletions | other.deletions,
            quarantined=[*self.quarantined, *other.quarantined],
        )


# =============================================================================
# Apply Results
# =============================================================================


@dataclass(frozen=True)
class PatchDiagnostic:
    """A patch instruction that could not be applied.

    Attributes:
        entity_id: Entity the instruction targeted
        field: Field name, None for entity-level problems
        message: Human-readable reason
        instruction_index: Position in the TextDiff list, if applicable
    """

    entity_id: str | None
    field: str | None
    message: str
    instruction_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entity_id": self.entity_id,
            "field": self.field,
            "message": self.message,
            "instruction_index": self.instruction_index,
        }


class PatchSummary(BaseModel):
    """What apply_patch did."""

    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    image_regeneration: list[str] = Field(default_factory=list)
    diagnostics: list[PatchDiagnostic] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.diagnostics
