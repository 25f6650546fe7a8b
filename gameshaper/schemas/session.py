"""Session Snapshot Model.

Entities, ledger, feedback document and chat history are persisted together through a
single serialize/deserialize boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from gameshaper.schemas.chat import ChatTurn
from gameshaper.schemas.entities import Entity
from gameshaper.schemas.feedback import FeedbackDocument
from gameshaper.schemas.ledger import LLMCall


SNAPSHOT_FORMAT_VERSION = 1


class SessionSnapshot(BaseModel):
    """Everything needed to resume a session."""

    format_version: int = SNAPSHOT_FORMAT_VERSION
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    entities: list[Entity] = Field(default_factory=list)
    ledger: list[LLMCall] = Field(default_factory=list)
    feedback: FeedbackDocument | None = None
    chat_history: list[ChatTurn] = Field(default_factory=list)
