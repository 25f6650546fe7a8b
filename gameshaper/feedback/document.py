"""Feedback Document Sections.

Default templates and the section update rule. A section that still holds
its default template is only ever replaced wholesale: diff instructions
aimed at boilerplate text would otherwise patch the placeholder.
"""

from __future__ import annotations

import logging

from gameshaper.patches.protocol import apply_field_op
from gameshaper.schemas.feedback import FeedbackDocument, FeedbackSection
from gameshaper.schemas.patches import FieldOp, PatchDiagnostic, Replace, TextDiff

logger = logging.getLogger(__name__)

DEFAULT_SECTIONS: dict[FeedbackSection, str] = {
    FeedbackSection.GENERAL: (
        "# World Notes\n\n"
        "*Running observations about this story world, its author and how the "
        "collaboration is going. Nothing has been recorded yet.*"
    ),
    FeedbackSection.NODE_EDITION: (
        "# Entity Edits\n\n"
        "*How proposed entity changes landed and what makes a good edit here. "
        "Nothing has been recorded yet.*"
    ),
    FeedbackSection.CHAT_TEXT: (
        "# Narrative Replies\n\n"
        "*Tone, pacing and coherence of the generated story text. "
        "Nothing has been recorded yet.*"
    ),
    FeedbackSection.ASSISTANT_FEEDBACK: (
        "# Assistant Requests\n\n"
        "*How well assistant-driven world changes matched the request. "
        "Nothing has been recorded yet.*"
    ),
    FeedbackSection.MANUAL_EDITS: (
        "# Hand Edits\n\n"
        "*What the author changes by hand, and what that says about their taste. "
        "Nothing has been recorded yet.*"
    ),
}


def default_document() -> FeedbackDocument:
    """A fresh document with every section at its default template."""
    return FeedbackDocument(
        **{section.value: text for section, text in DEFAULT_SECTIONS.items()}
    )


def is_default(section: FeedbackSection, text: str) -> bool:
    return text.strip() == DEFAULT_SECTIONS[section].strip()


def _first_write_replacement(op: TextDiff) -> str:
    """Turn a diff aimed at a default section into replacement text."""
    return "\n".join(
        instruction.replace for instruction in op.instructions if instruction.replace
    )


def apply_section_update(
    section: FeedbackSection,
    current: str,
    op: FieldOp,
    *,
    max_length: int,
) -> tuple[str, list[PatchDiagnostic]]:
    """Apply a memory update to one section.

    Returns:
        Tuple of (new section text, diagnostics for skipped instructions)
    """
    if is_default(section, current) and isinstance(op, TextDiff):
        replacement = _first_write_replacement(op)
        if not replacement:
            return current, [PatchDiagnostic(
                entity_id=None,
                field=section.value,
                message="diff on default template carries no replacement text",
            )]
        logger.info("Section %s still default; converting diff into replacement", section.value)
        op = Replace(value=replacement)

    new_value, diagnostics = apply_field_op(current, op, field=section.value)
    text = new_value if isinstance(new_value, str) else str(new_value or "")

    if len(text) > max_length:
        logger.warning(
            "Section %s exceeds %d characters (%d); truncating",
            section.value, max_length, len(text),
        )
        text = text[:max_length]
    return text, diagnostics
