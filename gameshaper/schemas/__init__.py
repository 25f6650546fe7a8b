"""Pydantic Schemas Package.

This package contains Pydantic models for:
- Entities of the story world graph
- Patch requests, field operations and apply summaries
- LLM call ledger entries
- Feedback memory document and tasks
- Chat turns and chat/assistant interaction results
- Generation pipeline state and stage outputs
- Persisted session snapshots

Pattern: Typed Data Transfer Objects (DTOs)
"""

from gameshaper.schemas.chat import (
    ActionSuggestions,
    AssistantResult,
    ChatRole,
    ChatTurn,
    UserInputResult,
)
from gameshaper.schemas.entities import (
    Entity,
    format_entities_for_prompt,
    resolve_field_name,
    sanitize_for_prompt,
)
from gameshaper.schemas.feedback import (
    FeedbackDocument,
    FeedbackSection,
    FeedbackTask,
    FeedbackTaskKind,
    RecentFeedback,
)
from gameshaper.schemas.ledger import CallStatus, LLMCall
from gameshaper.schemas.patches import (
    EntityUpdate,
    FieldOp,
    PatchDiagnostic,
    PatchRequest,
    PatchSummary,
    QuarantinedOp,
    Replace,
    TextDiff,
    TextDiffInstruction,
)
from gameshaper.schemas.pipeline import (
    FailedRule,
    PipelineConfig,
    PipelineError,
    PipelineMode,
    PipelineStage,
    PipelineState,
    PlanningOutput,
    SearchResult,
    SearchResults,
    ValidationResult,
    is_new_entity_id,
)
from gameshaper.schemas.session import SessionSnapshot


__all__: list[str] = [
    "ActionSuggestions",
    "AssistantResult",
    "CallStatus",
    "ChatRole",
    "ChatTurn",
    "Entity",
    "EntityUpdate",
    "FailedRule",
    "FeedbackDocument",
    "FeedbackSection",
    "FeedbackTask",
    "FeedbackTaskKind",
    "FieldOp",
    "LLMCall",
    "PatchDiagnostic",
    "PatchRequest",
    "PatchSummary",
    "PipelineConfig",
    "PipelineError",
    "PipelineMode",
    "PipelineStage",
    "PipelineState",
    "PlanningOutput",
    "QuarantinedOp",
    "RecentFeedback",
    "Replace",
    "SearchResult",
    "SearchResults",
    "SessionSnapshot",
    "TextDiff",
    "TextDiffInstruction",
    "UserInputResult",
    "ValidationResult",
    "format_entities_for_prompt",
    "is_new_entity_id",
    "resolve_field_name",
    "sanitize_for_prompt",
]
