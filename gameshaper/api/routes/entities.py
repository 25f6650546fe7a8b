"""Entity graph API routes.

Service Endpoints:
- GET /v1/entities - Current entity snapshot (wire format)
- POST /v1/entities/reconcile - Prune dangling parent/child links
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from gameshaper.api.dependencies import get_session
from gameshaper.session import GameShaperSession


router = APIRouter(
    prefix="/v1/entities",
    tags=["Entities"],
)


class EntityListResponse(BaseModel):
    entities: list[dict[str, Any]] = Field(default_factory=list)
    total: int = Field(default=0)


class ReconcileResponse(BaseModel):
    pruned: int = Field(default=0, description="Links removed")


@router.get("", response_model=EntityListResponse)
async def list_entities(
    session: GameShaperSession = Depends(get_session),
) -> EntityListResponse:
    entities = [entity.to_wire() for entity in session.graph.snapshot()]
    return EntityListResponse(entities=entities, total=len(entities))


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_links(
    session: GameShaperSession = Depends(get_session),
) -> ReconcileResponse:
    return ReconcileResponse(pruned=session.graph.reconcile_links())
