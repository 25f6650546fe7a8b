"""Feedback memory API routes.

Service Endpoints:
- GET /v1/feedback - Current feedback document
- POST /v1/feedback/reset - Restore every section to its default
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gameshaper.api.dependencies import get_session
from gameshaper.schemas.feedback import FeedbackDocument
from gameshaper.session import GameShaperSession


router = APIRouter(
    prefix="/v1/feedback",
    tags=["Feedback"],
)


@router.get("", response_model=FeedbackDocument)
async def get_feedback_document(
    session: GameShaperSession = Depends(get_session),
) -> FeedbackDocument:
    return session.get_feedback_document()


@router.post("/reset", response_model=FeedbackDocument)
async def reset_feedback_document(
    session: GameShaperSession = Depends(get_session),
) -> FeedbackDocument:
    return session.feedback.reset_to_default()
