"""Chat Interaction Models.

A user input in the chat panel produces three results: the narrative reply,
suggested next actions, and the world edit the reply implies.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from gameshaper.schemas.patches import PatchRequest, PatchSummary


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatTurn(BaseModel):
    """One message of the chat history."""

    role: ChatRole
    content: str


class ActionSuggestions(BaseModel):
    """Parsed answer of the action suggestion call."""

    actions: list[str] = Field(default_factory=list)


class UserInputResult(BaseModel):
    """Outcome of one chat interaction."""

    chat_text: str
    actions: list[str] = Field(default_factory=list)
    patch: PatchRequest
    summary: PatchSummary


class AssistantResult(BaseModel):
    """Outcome of one assistant request."""

    patch: PatchRequest
    summary: PatchSummary
