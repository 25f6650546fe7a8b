"""Feedback Memory Models.

The feedback document is the accumulated commentary the system keeps about
past calls. It is versioned: every applied update increments ``version``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FeedbackTaskKind(str, Enum):
    """Kinds of review task the feedback worker processes."""

    LLM_CALL_FEEDBACK = "llm_call_feedback"
    CHAT_TEXT_FEEDBACK = "chat_text_feedback"
    NODE_EDITION_FEEDBACK = "node_edition_feedback"
    MANUAL_EDIT_ANALYSIS = "manual_edit_analysis"
    ASSISTANT_FEEDBACK = "assistant_feedback"
    SYNTHESIZE_GENERAL = "synthesize_general"


class FeedbackSection(str, Enum):
    """Text sections of the feedback document."""

    GENERAL = "general"
    NODE_EDITION = "node_edition"
    CHAT_TEXT = "chat_text"
    ASSISTANT_FEEDBACK = "assistant_feedback"
    MANUAL_EDITS = "manual_edits"


class FeedbackTask(BaseModel):
    """A queued review task."""

    id: str = Field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    kind: FeedbackTaskKind
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecentFeedback(BaseModel):
    """One critique kept in the rolling recent list."""

    call_id: str | None = None
    call_type: str
    feedback: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FeedbackDocument(BaseModel):
    """Versioned analysis document with named sections."""

    version: int = 0
    general: str
    node_edition: str
    chat_text: str
    assistant_feedback: str
    manual_edits: str
    recent_feedback: list[RecentFeedback] = Field(default_factory=list)
    guidance: dict[str, str] = Field(default_factory=dict)
    pending_insights: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None

    def section(self, section: FeedbackSection) -> str:
        return getattr(self, section.value)
