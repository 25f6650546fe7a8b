"""Generation Pipeline Models.

PipelineState is created per user request and mutated in place, loop by
loop: planning -> searching -> generating -> validating -> completed | failed.

Pattern: State object passed through stages
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from gameshaper.schemas.entities import Entity
from gameshaper.schemas.patches import PatchRequest


# Placeholder ids the planner uses for entities that do not exist yet
NEW_ENTITY_PATTERN = re.compile(r"^NEW_NODE_[a-zA-Z0-9_]+$")


def is_new_entity_id(entity_id: str) -> bool:
    """Check if a planned target id denotes a creation."""
    return bool(NEW_ENTITY_PATTERN.match(entity_id))


class PipelineMode(str, Enum):
    """Whether the pipeline loops on its own or waits for the caller."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class PipelineStage(str, Enum):
    """Stage of the current loop."""

    PLANNING = "planning"
    SEARCHING = "searching"
    GENERATING = "generating"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.COMPLETED, PipelineStage.FAILED)


class PipelineConfig(BaseModel):
    """Per-request pipeline configuration."""

    mode: PipelineMode = PipelineMode.MANUAL
    max_loops: int = Field(default=3, ge=1, le=20)
    max_search_results: int | None = Field(default=None, ge=1, le=50)


# =============================================================================
# Stage Outputs
# =============================================================================


class _WireModel(BaseModel):
    """Stage outputs arrive camelCase from the model."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanningOutput(_WireModel):
    """Planner result.

    ``search_queries`` holds exactly two queries: broad first, precise second.
    """

    target_node_ids: list[str] = Field(default_factory=list)
    delete_node_ids: list[str] = Field(default_factory=list)
    objectives: str = ""
    success_rules: list[str] = Field(default_factory=list)
    search_queries: list[str] = Field(..., min_length=2, max_length=2)

    @field_validator("objectives", mode="before")
    @classmethod
    def _join_objectives(cls, value: Any) -> Any:
        if isinstance(value, list):
            return "\n".join(str(item) for item in value)
        return value

    @field_validator("delete_node_ids")
    @classmethod
    def _no_placeholder_deletions(cls, value: list[str]) -> list[str]:
        for entity_id in value:
            if is_new_entity_id(entity_id):
                raise ValueError(f"cannot delete an entity that does not exist yet: {entity_id}")
        return value

    @property
    def broad_query(self) -> str:
        return self.search_queries[0]

    @property
    def precise_query(self) -> str:
        return self.search_queries[1]


class SearchResult(BaseModel):
    """One web search hit."""

    title: str = ""
    url: str = ""
    description: str = ""


class SearchResults(BaseModel):
    """Results of the two planning queries."""

    broad: list[SearchResult] = Field(default_factory=list)
    precise: list[SearchResult] = Field(default_factory=list)


class FailedRule(_WireModel):
    rule: str
    reason: str = ""
    node_id: str = ""


class ValidationResult(_WireModel):
    """Partition of the success rules after validation."""

    validated_rules: list[str]
    failed_rules: list[FailedRule]
    failed_node_ids: list[str]

    @property
    def passed(self) -> bool:
        return not self.failed_rules


class PipelineError(BaseModel):
    """A stage failure recorded instead of raised."""

    loop: int
    stage: PipelineStage
    error: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# Pipeline State
# =============================================================================


class PipelineState(BaseModel):
    """Mutable state of one pipeline request."""

    mode: PipelineMode = PipelineMode.MANUAL
    max_loops: int = 3
    current_loop: int = 1
    stage: PipelineStage = PipelineStage.PLANNING
    user_prompt: str
    max_search_results: int | None = None

    planning_output: PlanningOutput | None = None
    search_results: SearchResults | None = None
    generated_diffs: dict[str, PatchRequest] | None = None
    validation_result: ValidationResult | None = None
    errors: list[PipelineError] = Field(default_factory=list)

    original_entity_snapshot: list[Entity] = Field(default_factory=list)
    current_entity_snapshot: list[Entity] = Field(default_factory=list)
    final_entities: list[Entity] | None = None

    discarded: bool = False

    @property
    def can_continue(self) -> bool:
        """True when the loop failed and the loop budget is not exhausted."""
        return (
            not self.discarded
            and self.stage == PipelineStage.FAILED
            and self.current_loop < self.max_loops
        )

    def discard(self) -> None:
        """Stop progress at the next stage boundary."""
        self.discarded = True

    def record_error(self, stage: PipelineStage, error: str) -> PipelineError:
        record = PipelineError(loop=self.current_loop, stage=stage, error=error)
        self.errors.append(record)
        return record

    def combined_patch(self) -> PatchRequest:
        """All generated diffs of the last loop as one request."""
        combined = PatchRequest()
        for patch in (self.generated_diffs or {}).values():
            combined = combined.merged_with(patch)
        return combined
