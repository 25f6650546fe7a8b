"""Patch Protocol.

Pure functions that apply field-level edits to entity snapshots. No I/O,
no shared state: inputs are never mutated, results are fresh copies.

Failure model:
    A TextDiff instruction whose target occurrence is absent is skipped and
    reported as a PatchDiagnostic. Sibling instructions, fields and entities
    of the same request still apply.

Apply order:
    1. new entities (an id collision updates the provided fields)
    2. updates (unknown entity -> diagnostic)
    3. deletions (delete wins over an update of the same id)

Deletions do not touch parent/child links of surviving entities; the
caller runs prune_dangling_links as a follow-up pass.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from gameshaper.schemas.entities import Entity, resolve_field_name
from gameshaper.schemas.patches import (
    EntityUpdate,
    FieldOp,
    PatchDiagnostic,
    PatchRequest,
    PatchSummary,
    Replace,
    TextDiff,
    TextDiffInstruction,
)

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id"})


# =============================================================================
# Text Diff
# =============================================================================


def _find_occurrence(text: str, needle: str, occurrence: int) -> int:
    """Index of the ``occurrence``-th non-overlapping match, or -1."""
    start = 0
    index = -1
    for _ in range(occurrence):
        index = text.find(needle, start)
        if index == -1:
            return -1
        start = index + len(needle)
    return index


def apply_text_diff(
    text: str,
    instructions: list[TextDiffInstruction],
    *,
    entity_id: str | None = None,
    field: str | None = None,
) -> tuple[str, list[PatchDiagnostic]]:
    """Apply diff instructions in order to ``text``.

    Each instruction searches the value produced by the previous one.

    Args:
        text: Current field value
        instructions: Ordered find/replace instructions
        entity_id: Entity id, only used in diagnostics
        field: Field name, only used in diagnostics

    Returns:
        Tuple of (new text, diagnostics for skipped instructions)
    """
    diagnostics: list[PatchDiagnostic] = []
    result = text

    for index, instruction in enumerate(instructions):
        if not instruction.find:
            result += instruction.replace
            continue

        position = _find_occurrence(result, instruction.find, instruction.occurrence)
        if position == -1:
            message = (
                f"occurrence {instruction.occurrence} of "
                f"{instruction.find[:50]!r} not found"
            )
            logger.warning(
                "Skipping diff instruction %d on %s.%s: %s",
                index, entity_id, field, message,
            )
            diagnostics.append(PatchDiagnostic(
                entity_id=entity_id,
                field=field,
                message=message,
                instruction_index=index,
            ))
            continue

        result = result[:position] + instruction.replace + result[position + len(instruction.find):]

    return result, diagnostics


def apply_field_op(
    value: Any,
    op: FieldOp,
    *,
    entity_id: str | None = None,
    field: str | None = None,
) -> tuple[Any, list[PatchDiagnostic]]:
    """Apply one field operation to a field value."""
    if isinstance(op, Replace):
        return op.value, []

    if isinstance(op, TextDiff):
        if value is None:
            value = ""
        if not isinstance(value, str):
            return value, [PatchDiagnostic(
                entity_id=entity_id,
                field=field,
                message=f"text diff on non-text value of type {type(value).__name__}",
            )]
        return apply_text_diff(value, op.instructions, entity_id=entity_id, field=field)

    raise TypeError(f"Unsupported field operation: {op!r}")


# =============================================================================
# Entity Patch
# =============================================================================


def _update_entity(
    entity: Entity,
    fields: dict[str, FieldOp],
    diagnostics: list[PatchDiagnostic],
) -> Entity:
    """Apply field ops one by one; a rejected field leaves the others intact."""
    current = entity
    for raw_name, op in fields.items():
        name = resolve_field_name(raw_name)
        if name in IMMUTABLE_FIELDS:
            diagnostics.append(PatchDiagnostic(
                entity_id=entity.id,
                field=raw_name,
                message="entity id is immutable",
            ))
            continue

        data = current.model_dump()
        new_value, field_diagnostics = apply_field_op(
            data.get(name), op, entity_id=entity.id, field=raw_name,
        )
        diagnostics.extend(field_diagnostics)
        data[name] = new_value

        try:
            current = Entity.model_validate(data)
        except ValidationError as e:
            diagnostics.append(PatchDiagnostic(
                entity_id=entity.id,
                field=raw_name,
                message=f"rejected value: {e.errors()[0]['msg']}",
            ))
    return current


def _merge_new_entity(existing: Entity, incoming: Entity) -> Entity:
    """Id collision on create: only the fields the payload provided change."""
    provided = incoming.model_dump(exclude_unset=True)
    provided.pop("id", None)
    data = existing.model_dump()
    data.update(provided)
    return Entity.model_validate(data)


def apply_patch(
    current_entities: list[Entity],
    request: PatchRequest,
) -> tuple[list[Entity], PatchSummary]:
    """Apply a patch request to an entity snapshot.

    Args:
        current_entities: Snapshot to patch (not mutated)
        request: Parsed patch request

    Returns:
        Tuple of (next snapshot, summary of what changed)
    """
    entities: dict[str, Entity] = {
        entity.id: entity.model_copy(deep=True) for entity in current_entities
    }
    summary = PatchSummary()

    for incoming in request.new_entities:
        if incoming.id in entities:
            entities[incoming.id] = _merge_new_entity(entities[incoming.id], incoming)
            summary.updated.append(incoming.id)
        else:
            entities[incoming.id] = incoming.model_copy(deep=True)
            summary.created.append(incoming.id)
        if entities[incoming.id].update_image:
            summary.image_regeneration.append(incoming.id)

    for entity_id, update in request.updates.items():
        if entity_id not in entities:
            logger.warning("Update targets unknown entity %s", entity_id)
            summary.diagnostics.append(PatchDiagnostic(
                entity_id=entity_id,
                field=None,
                message="update targets an unknown entity",
            ))
            continue

        entity = _update_entity(entities[entity_id], update.fields, summary.diagnostics)
        if update.image_regenerate is not None:
            entity = entity.model_copy(update={"update_image": update.image_regenerate})
            if update.image_regenerate and entity_id not in summary.image_regeneration:
                summary.image_regeneration.append(entity_id)
        entities[entity_id] = entity
        if entity_id not in summary.updated and entity_id not in summary.created:
            summary.updated.append(entity_id)

    for entity_id in sorted(request.deletions):
        if entities.pop(entity_id, None) is None:
            logger.warning("Deletion targets unknown entity %s", entity_id)
            summary.diagnostics.append(PatchDiagnostic(
                entity_id=entity_id,
                field=None,
                message="deletion targets an unknown entity",
            ))
            continue
        summary.deleted.append(entity_id)

    deleted = set(summary.deleted)
    summary.created = [eid for eid in summary.created if eid not in deleted]
    summary.updated = [eid for eid in summary.updated if eid not in deleted]
    summary.image_regeneration = [eid for eid in summary.image_regeneration if eid not in deleted]

    return list(entities.values()), summary


def diff_snapshots(before: list[Entity], after: list[Entity]) -> PatchRequest:
    """Build the Replace-only patch that turns ``before`` into ``after``.

    Used to apply a pipeline's working snapshot to the canonical graph
    through the regular apply_patch path.
    """
    previous = {entity.id: entity for entity in before}
    current = {entity.id: entity for entity in after}
    request = PatchRequest()

    for entity_id, entity in current.items():
        old = previous.get(entity_id)
        if old is None:
            request.new_entities.append(entity.model_copy(deep=True))
            continue
        old_data, new_data = old.model_dump(), entity.model_dump()
        fields: dict[str, FieldOp] = {
            name: Replace(value=value)
            for name, value in new_data.items()
            if name != "id" and old_data.get(name) != value
        }
        if fields:
            request.updates[entity_id] = EntityUpdate(fields=fields)

    request.deletions = set(previous) - set(current)
    return request


# =============================================================================
# Link Reconciliation
# =============================================================================


def prune_dangling_links(entities: list[Entity]) -> tuple[list[Entity], int]:
    """Remove parent/child references to ids that no longer exist.

    Returns:
        Tuple of (entities with links pruned, number of references removed)
    """
    known = {entity.id for entity in entities}
    pruned = 0
    result: list[Entity] = []

    for entity in entities:
        changes: dict[str, Any] = {}
        children = [child for child in entity.child if child in known]
        if len(children) != len(entity.child):
            pruned += len(entity.child) - len(children)
            changes["child"] = children
        if entity.parent is not None and entity.parent not in known:
            pruned += 1
            changes["parent"] = None
        result.append(entity.model_copy(update=changes) if changes else entity)

    if pruned:
        logger.info("Pruned %d dangling parent/child references", pruned)
    return result, pruned
