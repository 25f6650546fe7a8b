"""Generation pipeline API routes.

Service Endpoints:
- POST /v1/pipelines/generation/run - Start a pipeline on the current graph
- POST /v1/pipelines/generation/next-loop - Run another loop of the last state
- POST /v1/pipelines/generation/discard - Discard the last state

The last pipeline state is kept on ``app.state.pipeline_state`` so manual
mode can continue it.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from gameshaper.api.dependencies import get_session
from gameshaper.schemas.patches import PatchSummary
from gameshaper.schemas.pipeline import PipelineConfig, PipelineMode, PipelineState
from gameshaper.session import GameShaperSession


logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/v1/pipelines/generation",
    tags=["Pipelines"],
)


# =============================================================================
# Request/Response Models
# =============================================================================

class PipelineRunRequest(BaseModel):
    """Request model for a pipeline run.

    Attributes:
        prompt: Author request
        mode: automatic loops on its own; manual returns after one loop
        max_loops: Loop budget
        max_search_results: Results per search query
        apply_result: Apply the final entities to the graph on success
    """

    prompt: str = Field(..., min_length=1, description="Author request")
    mode: PipelineMode = Field(default=PipelineMode.MANUAL)
    max_loops: int | None = Field(default=None, ge=1, le=20)
    max_search_results: int | None = Field(default=None, ge=1, le=50)
    apply_result: bool = Field(default=True, description="Apply entities on success")


class PipelineContinueRequest(BaseModel):
    apply_result: bool = Field(default=True, description="Apply entities on success")


class PipelineRunResponse(BaseModel):
    """Response model for a pipeline run.

    Attributes:
        state: Pipeline state after the run
        applied: What was applied to the graph, None when nothing was
    """

    state: dict[str, Any] = Field(..., description="Pipeline state")
    applied: PatchSummary | None = Field(default=None)


def _last_state(request: Request) -> PipelineState:
    state: PipelineState | None = getattr(request.app.state, "pipeline_state", None)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No pipeline has been run",
        )
    return state


async def _respond(
    request: Request,
    session: GameShaperSession,
    state: PipelineState,
    apply_result: bool,
) -> PipelineRunResponse:
    request.app.state.pipeline_state = state
    applied = await session.apply_pipeline_result(state) if apply_result else None
    return PipelineRunResponse(state=state.model_dump(mode="json"), applied=applied)


# =============================================================================
# Routes
# =============================================================================

@router.post("/run", response_model=PipelineRunResponse)
async def run_generation_pipeline(
    body: PipelineRunRequest,
    request: Request,
    session: GameShaperSession = Depends(get_session),
) -> PipelineRunResponse:
    """Run the generation pipeline.

    Stage failures come back inside ``state.errors``; only a concurrent run
    is rejected (409).
    """
    config = PipelineConfig(
        mode=body.mode,
        max_loops=body.max_loops or session.settings.pipeline_max_loops,
        max_search_results=body.max_search_results,
    )
    state = await session.run_pipeline(body.prompt, config)
    logger.info(
        "Generation pipeline finished: stage=%s loop=%d/%d",
        state.stage.value, state.current_loop, state.max_loops,
    )
    return await _respond(request, session, state, body.apply_result)


@router.post("/next-loop", response_model=PipelineRunResponse)
async def run_next_loop(
    body: PipelineContinueRequest,
    request: Request,
    session: GameShaperSession = Depends(get_session),
) -> PipelineRunResponse:
    state = await session.run_next_loop(_last_state(request))
    return await _respond(request, session, state, body.apply_result)


@router.post("/discard", status_code=status.HTTP_204_NO_CONTENT)
async def discard_pipeline(
    request: Request,
    session: GameShaperSession = Depends(get_session),
) -> None:
    session.discard_pipeline(_last_state(request))
