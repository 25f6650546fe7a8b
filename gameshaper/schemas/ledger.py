"""LLM Call Ledger Models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CallStatus(str, Enum):
    """Lifecycle status of a ledger entry.

    queued -> running -> completed | failed, never backwards.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.COMPLETED, CallStatus.FAILED)

    @property
    def is_pending(self) -> bool:
        return self in (CallStatus.QUEUED, CallStatus.RUNNING)


class LLMCall(BaseModel):
    """One outbound model call (or internal system event).

    Entries are frozen; the ledger swaps in an updated copy on each
    transition so snapshots handed to subscribers never change.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    call_type: str
    model: str | None = None
    status: CallStatus = CallStatus.QUEUED
    start_time: datetime
    end_time: datetime | None = None
    duration_ms: int | None = Field(default=None, ge=0)
    prompt: str = ""
    response: str | None = None
    error: str | None = None
    feedback: str | None = None
