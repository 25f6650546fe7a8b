"""Edit API routes.

Service Endpoints:
- POST /v1/edits - Single-shot LLM edit of the entity graph
- POST /v1/edits/manual - Apply a hand edit and queue its analysis
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from gameshaper.api.dependencies import get_session
from gameshaper.schemas.entities import Entity
from gameshaper.schemas.patches import PatchSummary
from gameshaper.session import GameShaperSession


router = APIRouter(
    prefix="/v1/edits",
    tags=["Edits"],
)


class EditRequest(BaseModel):
    """Request model for a single-shot edit."""

    prompt: str = Field(..., min_length=1, description="Author instruction")


class EditResponse(BaseModel):
    """Response model for a single-shot edit.

    Attributes:
        patch: Applied patch in wire format (n_nodes/u_nodes/d_nodes)
        quarantined: Number of rejected patch fragments
        entity_count: Entities after the edit
    """

    patch: dict[str, Any] = Field(..., description="Applied patch in wire format")
    quarantined: int = Field(default=0, description="Rejected patch fragments")
    entity_count: int = Field(default=0, description="Entities after the edit")


class ManualEditRequest(BaseModel):
    """Before/after snapshots of the entities the author changed by hand."""

    before: list[Entity] = Field(default_factory=list)
    after: list[Entity] = Field(default_factory=list)


@router.post("", response_model=EditResponse)
async def submit_edit(
    request: EditRequest,
    session: GameShaperSession = Depends(get_session),
) -> EditResponse:
    """Ask the model for a patch and apply it to the graph."""
    patch = await session.submit_user_edit(request.prompt)
    return EditResponse(
        patch=patch.to_wire(),
        quarantined=len(patch.quarantined),
        entity_count=len(session.graph),
    )


@router.post("/manual", response_model=PatchSummary)
async def submit_manual_edit(
    request: ManualEditRequest,
    session: GameShaperSession = Depends(get_session),
) -> PatchSummary:
    return await session.record_manual_edit(request.before, request.after)
