"""Patch protocol: pure entity edits and the LLM parse boundary."""

from gameshaper.patches.parsing import (
    parse_field_op,
    parse_patch_request,
    parse_patch_text,
    parse_target_diff,
    safe_json_parse,
)
from gameshaper.patches.protocol import (
    apply_field_op,
    apply_patch,
    apply_text_diff,
    diff_snapshots,
    prune_dangling_links,
)


__all__ = [
    "apply_field_op",
    "apply_patch",
    "apply_text_diff",
    "diff_snapshots",
    "parse_field_op",
    "parse_patch_request",
    "parse_patch_text",
    "parse_target_diff",
    "prune_dangling_links",
    "safe_json_parse",
]
