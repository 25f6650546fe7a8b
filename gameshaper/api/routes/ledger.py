"""Call ledger API routes.

Service Endpoints:
- GET /v1/ledger - All recorded calls, oldest first
- DELETE /v1/ledger - Clear the ledger (explicit, user-triggered)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from gameshaper.api.dependencies import get_session
from gameshaper.schemas.ledger import LLMCall
from gameshaper.session import GameShaperSession


router = APIRouter(
    prefix="/v1/ledger",
    tags=["Ledger"],
)


class LedgerResponse(BaseModel):
    """Response model for the ledger.

    Attributes:
        calls: Ledger entries in insertion order
        pending_count: Entries still queued or running
        pending_tasks: Pending calls plus queued feedback tasks
    """

    calls: list[LLMCall] = Field(default_factory=list)
    pending_count: int = Field(default=0)
    pending_tasks: int = Field(default=0)


@router.get("", response_model=LedgerResponse)
async def get_ledger(
    session: GameShaperSession = Depends(get_session),
) -> LedgerResponse:
    return LedgerResponse(
        calls=session.ledger.entries(),
        pending_count=session.ledger.pending_count(),
        pending_tasks=session.get_pending_task_count(),
    )


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_ledger(
    session: GameShaperSession = Depends(get_session),
) -> None:
    session.ledger.clear()
