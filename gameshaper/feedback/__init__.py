"""Feedback memory: review task queue and versioned analysis document."""

from gameshaper.feedback.document import (
    DEFAULT_SECTIONS,
    apply_section_update,
    default_document,
    is_default,
)
from gameshaper.feedback.memory import (
    FeedbackMemory,
    FeedbackResponse,
    parse_feedback_response,
    task_kind_for_call,
)


__all__ = [
    "DEFAULT_SECTIONS",
    "FeedbackMemory",
    "FeedbackResponse",
    "apply_section_update",
    "default_document",
    "is_default",
    "parse_feedback_response",
    "task_kind_for_call",
]
