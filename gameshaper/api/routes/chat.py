"""Chat and assistant API routes.

Service Endpoints:
- POST /v1/chat - Narrate a player input, suggest actions, edit the world
- GET /v1/chat/history - Chat turns of the session
- POST /v1/assistant - Reshape the world on request
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from gameshaper.api.dependencies import get_session
from gameshaper.schemas.chat import ChatTurn
from gameshaper.schemas.patches import PatchSummary
from gameshaper.session import GameShaperSession


router = APIRouter(
    prefix="/v1",
    tags=["Chat"],
)


class ChatRequest(BaseModel):
    """Request model for one chat input."""

    input: str = Field(..., min_length=1, description="Player input")


class ChatResponse(BaseModel):
    """Response model for one chat input.

    Attributes:
        chat_text: Narrative reply
        actions: Suggested next actions, empty when the suggestion call failed
        patch: Applied world edit in wire format
        summary: What the edit changed
    """

    chat_text: str
    actions: list[str] = Field(default_factory=list)
    patch: dict[str, Any]
    summary: PatchSummary


class ChatHistoryResponse(BaseModel):
    turns: list[ChatTurn] = Field(default_factory=list)


class AssistantRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="What to change in the world")


class AssistantResponse(BaseModel):
    patch: dict[str, Any]
    summary: PatchSummary


@router.post("/chat", response_model=ChatResponse)
async def submit_chat(
    request: ChatRequest,
    session: GameShaperSession = Depends(get_session),
) -> ChatResponse:
    result = await session.submit_user_input(request.input)
    return ChatResponse(
        chat_text=result.chat_text,
        actions=result.actions,
        patch=result.patch.to_wire(),
        summary=result.summary,
    )


@router.get("/chat/history", response_model=ChatHistoryResponse)
async def get_chat_history(
    session: GameShaperSession = Depends(get_session),
) -> ChatHistoryResponse:
    return ChatHistoryResponse(turns=session.chat_history)


@router.post("/assistant", response_model=AssistantResponse)
async def submit_assistant_request(
    request: AssistantRequest,
    session: GameShaperSession = Depends(get_session),
) -> AssistantResponse:
    """Apply an assistant request; its review feeds the assistant notes."""
    result = await session.submit_assistant_request(request.prompt)
    return AssistantResponse(patch=result.patch.to_wire(), summary=result.summary)
