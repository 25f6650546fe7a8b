"""Patch Parse Boundary.

Converts raw LLM output into validated PatchRequest objects. Everything
loosely typed stops here: a field op must be exactly one of ``rpl`` or
``df``; anything else is quarantined with a reason instead of reaching the
protocol layer.

Wire shape:
    {
      "n_nodes": [{...entity...}],
      "u_nodes": {"<id>": {"<field>": {"rpl": ...} | {"df": [...]}, "img_upd": true}},
      "d_nodes": ["<id>"]
    }
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from gameshaper.core.exceptions import MalformedResponseError, PatchValidationError
from gameshaper.schemas.entities import Entity
from gameshaper.schemas.patches import (
    EntityUpdate,
    FieldOp,
    PatchRequest,
    QuarantinedOp,
    Replace,
    TextDiff,
    TextDiffInstruction,
)
from gameshaper.schemas.pipeline import is_new_entity_id

logger = logging.getLogger(__name__)

IMAGE_FLAG_KEY = "img_upd"
PATCH_KEYS = ("n_nodes", "u_nodes", "d_nodes")

# Plain string values accepted as Replace for these fields in direct target diffs
DIRECT_FIELDS = ("name", "longDescription", "type", "rules")

_FENCE_START = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_END = re.compile(r"\s*```$")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


# =============================================================================
# JSON
# =============================================================================


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def _extract_object(text: str) -> str:
    """Cut leading/trailing prose around the outermost JSON object."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start:end + 1]


def _close_brackets(text: str) -> str:
    """Append closers for brackets left open by a truncated response."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()
    if in_string:
        text += '"'
    return text.rstrip().rstrip(",") + "".join(reversed(stack))


def safe_json_parse(text: str, *, call_type: str | None = None) -> Any:
    """Parse model output as JSON, repairing common LLM mistakes.

    Repairs tried in order: markdown fences, surrounding prose, trailing
    commas, unclosed brackets.

    Raises:
        MalformedResponseError: If the text cannot be parsed after repair.
    """
    try:
        return json.loads(text)
    except (TypeError, json.JSONDecodeError):
        pass

    candidate = _TRAILING_COMMA.sub(r"\1", _extract_object(_strip_fences(text or "")))
    for attempt in (candidate, _close_brackets(candidate)):
        try:
            result = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        logger.info("JSON response required repair before parsing")
        return result

    raise MalformedResponseError(
        "Response is not valid JSON",
        call_type=call_type,
        raw_response=text,
    )


# =============================================================================
# Field Ops
# =============================================================================


def parse_field_op(payload: Any) -> FieldOp:
    """Parse one ``{rpl: ...}`` or ``{df: [...]}`` payload.

    Raises:
        PatchValidationError: If the payload is neither or both.
    """
    if not isinstance(payload, dict):
        raise PatchValidationError(f"field op must be an object, got {type(payload).__name__}")

    has_replace = "rpl" in payload
    has_diff = "df" in payload
    if has_replace and has_diff:
        raise PatchValidationError("field op carries both 'rpl' and 'df'")
    if has_replace:
        return Replace(value=payload["rpl"])
    if has_diff:
        raw = payload["df"]
        if not isinstance(raw, list):
            raise PatchValidationError("'df' must be a list of instructions")
        try:
            instructions = [TextDiffInstruction.model_validate(item) for item in raw]
        except ValidationError as e:
            raise PatchValidationError(f"invalid diff instruction: {e.errors()[0]['msg']}") from e
        return TextDiff(instructions=instructions)
    raise PatchValidationError("field op needs 'rpl' or 'df'")


def _parse_entity_update(
    entity_id: str,
    payload: Any,
    quarantined: list[QuarantinedOp],
) -> EntityUpdate | None:
    if not isinstance(payload, dict):
        quarantined.append(QuarantinedOp(
            entity_id=entity_id, reason="update must be an object", payload=payload,
        ))
        return None

    update = EntityUpdate()
    for field, raw in payload.items():
        if field == IMAGE_FLAG_KEY:
            if isinstance(raw, bool):
                update.image_regenerate = raw
            else:
                quarantined.append(QuarantinedOp(
                    entity_id=entity_id, field=field, reason="'img_upd' must be a boolean", payload=raw,
                ))
            continue
        try:
            update.fields[field] = parse_field_op(raw)
        except PatchValidationError as e:
            logger.warning("Quarantined op on %s.%s: %s", entity_id, field, e.message)
            quarantined.append(QuarantinedOp(
                entity_id=entity_id, field=field, reason=e.message, payload=raw,
            ))
    return update


def parse_patch_request(payload: Any) -> PatchRequest:
    """Parse an ``n_nodes``/``u_nodes``/``d_nodes`` payload.

    Malformed fragments are quarantined; only a non-object payload raises.

    Raises:
        PatchValidationError: If the payload is not an object.
    """
    if not isinstance(payload, dict):
        raise PatchValidationError(f"patch must be an object, got {type(payload).__name__}")

    request = PatchRequest()

    new_entities = payload.get("n_nodes") or []
    if not isinstance(new_entities, list):
        request.quarantined.append(QuarantinedOp(reason="'n_nodes' must be a list", payload=new_entities))
        new_entities = []
    for raw in new_entities:
        if not isinstance(raw, dict):
            request.quarantined.append(QuarantinedOp(reason="new entity must be an object", payload=raw))
            continue
        try:
            request.new_entities.append(Entity.model_validate(raw))
        except ValidationError as e:
            request.quarantined.append(QuarantinedOp(
                entity_id=raw.get("id"),
                reason=f"invalid entity: {e.errors()[0]['msg']}",
                payload=raw,
            ))

    updates = payload.get("u_nodes") or {}
    if isinstance(updates, dict):
        for entity_id, raw in updates.items():
            update = _parse_entity_update(str(entity_id), raw, request.quarantined)
            if update is not None:
                request.updates[str(entity_id)] = update
    else:
        request.quarantined.append(QuarantinedOp(reason="'u_nodes' must be an object", payload=updates))

    deletions = payload.get("d_nodes") or []
    if isinstance(deletions, list):
        request.deletions.update(str(entity_id) for entity_id in deletions if entity_id)
    else:
        request.quarantined.append(QuarantinedOp(reason="'d_nodes' must be a list", payload=deletions))

    return request


def parse_patch_text(text: str, *, call_type: str | None = None) -> PatchRequest:
    """Parse raw model text into a PatchRequest.

    Raises:
        MalformedResponseError: If the text is not a JSON object.
    """
    payload = safe_json_parse(text, call_type=call_type)
    try:
        return parse_patch_request(payload)
    except PatchValidationError as e:
        raise MalformedResponseError(e.message, call_type=call_type, raw_response=text) from e


# =============================================================================
# Pipeline Target Diffs
# =============================================================================


def parse_target_diff(target_id: str, payload: Any) -> PatchRequest:
    """Parse the generation output for one planned target.

    Accepted shapes, in order:
    - a regular ``n_nodes``/``u_nodes``/``d_nodes`` patch
    - a bare entity, for ``NEW_NODE_`` targets
    - ``{"df": [...]}`` or ``{"rpl": ...}``, applied to the target's longDescription
    - a field map for the target (string values are replacements)

    Raises:
        PatchValidationError: If nothing usable can be extracted.
    """
    if not isinstance(payload, dict):
        raise PatchValidationError(
            f"diff for {target_id} must be an object", entity_id=target_id, value=payload,
        )

    if any(key in payload for key in PATCH_KEYS):
        return parse_patch_request(payload)

    if is_new_entity_id(target_id):
        if not payload.get("id"):
            raise PatchValidationError(
                f"new entity for {target_id} has no id", entity_id=target_id, value=payload,
            )
        try:
            return PatchRequest(new_entities=[Entity.model_validate(payload)])
        except ValidationError as e:
            raise PatchValidationError(
                f"invalid new entity for {target_id}", entity_id=target_id, value=payload,
            ) from e

    if "df" in payload or "rpl" in payload:
        op = parse_field_op(payload)
        return PatchRequest(updates={target_id: EntityUpdate(fields={"longDescription": op})})

    field_map: dict[str, Any] = {}
    for field, raw in payload.items():
        if isinstance(raw, str) and field in DIRECT_FIELDS:
            field_map[field] = {"rpl": raw}
        else:
            field_map[field] = raw
    if not field_map:
        raise PatchValidationError(f"empty diff for {target_id}", entity_id=target_id)
    return parse_patch_request({"u_nodes": {target_id: field_map}})
