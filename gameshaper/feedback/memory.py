"""Feedback Memory.

A versioned analysis document fed by a task queue. Completed LLM calls,
manual edits and assistant exchanges become review tasks; one asyncio
worker processes them strictly one at a time in submission order, so two
analyses never patch the document concurrently.

Task processing:
    prompt (template + current section + payload)
    -> internal dispatcher call
    -> parse {memory_update: {rpl|df}, feedback?, guidance?, insight?}
    -> apply to the section with patch-protocol field semantics
    -> attach feedback to the originating ledger call
    -> persist callback

Failure policy:
    A task whose call fails or whose answer does not parse is logged (the
    dispatcher already marked its ledger entry failed) and dropped. The
    document is unchanged and the queue moves on. No retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from gameshaper.clients.dispatch import CallDispatcher
from gameshaper.core.exceptions import (
    GameShaperError,
    InvalidTransitionError,
    LLMTransportError,
    MalformedResponseError,
    UnknownCallError,
)
from gameshaper.core.prompts import format_prompt, get_prompt
from gameshaper.feedback.document import apply_section_update, default_document, is_default
from gameshaper.patches.parsing import parse_field_op, safe_json_parse
from gameshaper.schemas.feedback import (
    FeedbackDocument,
    FeedbackSection,
    FeedbackTask,
    FeedbackTaskKind,
    RecentFeedback,
)
from gameshaper.schemas.ledger import LLMCall
from gameshaper.schemas.patches import FieldOp

logger = logging.getLogger(__name__)

DocumentListener = Callable[[FeedbackDocument], Awaitable[None]]

# kind -> (section it maintains, prompt template / internal call type)
TASK_ROUTES: dict[FeedbackTaskKind, tuple[FeedbackSection, str]] = {
    FeedbackTaskKind.LLM_CALL_FEEDBACK: (FeedbackSection.GENERAL, "feedback_llm_call"),
    FeedbackTaskKind.CHAT_TEXT_FEEDBACK: (FeedbackSection.CHAT_TEXT, "feedback_chat_text"),
    FeedbackTaskKind.NODE_EDITION_FEEDBACK: (FeedbackSection.NODE_EDITION, "feedback_node_edition"),
    FeedbackTaskKind.MANUAL_EDIT_ANALYSIS: (FeedbackSection.MANUAL_EDITS, "feedback_manual_edit"),
    FeedbackTaskKind.ASSISTANT_FEEDBACK: (FeedbackSection.ASSISTANT_FEEDBACK, "feedback_assistant"),
    FeedbackTaskKind.SYNTHESIZE_GENERAL: (FeedbackSection.GENERAL, "feedback_synthesize_general"),
}

PROMPT_EXCERPT_LENGTH = 5000


def task_kind_for_call(call_type: str) -> FeedbackTaskKind:
    """Pick the review task kind for a completed call."""
    if call_type.startswith("chat"):
        return FeedbackTaskKind.CHAT_TEXT_FEEDBACK
    if call_type.startswith("node_edition"):
        return FeedbackTaskKind.NODE_EDITION_FEEDBACK
    if call_type.startswith("assistant"):
        return FeedbackTaskKind.ASSISTANT_FEEDBACK
    return FeedbackTaskKind.LLM_CALL_FEEDBACK


class FeedbackResponse(BaseModel):
    """Parsed answer of a review call."""

    memory_update: FieldOp | None = Field(
        default=None,
        validation_alias=AliasChoices("memory_update", "memory_update_diffs"),
    )
    feedback: str | None = None
    guidance: str | None = None
    insight: str | None = Field(
        default=None,
        validation_alias=AliasChoices("insight", "consciousness_evolution"),
    )

    @field_validator("memory_update", mode="before")
    @classmethod
    def _parse_op(cls, value: Any) -> Any:
        if value is None or isinstance(value, BaseModel):
            return value
        return parse_field_op(value)


def parse_feedback_response(text: str) -> FeedbackResponse:
    """Parse a review answer.

    Raises:
        MalformedResponseError: On invalid JSON or a non-object answer
        PatchValidationError: When memory_update carries both rpl and df
    """
    payload = safe_json_parse(text)
    if not isinstance(payload, dict):
        raise MalformedResponseError("Feedback response must be a JSON object", raw_response=text)
    return FeedbackResponse.model_validate(payload)


def _excerpt(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
    return text[:PROMPT_EXCERPT_LENGTH]


class FeedbackMemory:
    """Task queue plus versioned feedback document.

    Example:
        ```python
        memory = FeedbackMemory(dispatcher)
        memory.start()
        memory.add_task(FeedbackTaskKind.MANUAL_EDIT_ANALYSIS, {"before": ..., "after": ...})
        await memory.join()
        document = memory.get_document()
        ```
    """

    def __init__(
        self,
        dispatcher: CallDispatcher,
        *,
        recent_limit: int = 5,
        consolidation_threshold: int = 3,
        max_document_length: int = 15000,
        on_document_changed: DocumentListener | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._recent_limit = recent_limit
        self._consolidation_threshold = consolidation_threshold
        self._max_document_length = max_document_length
        self._on_document_changed = on_document_changed

        self._document = default_document()
        self._queue: asyncio.Queue[FeedbackTask] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._processing = False
        self._synthesis_queued = False

    # =========================================================================
    # Queue
    # =========================================================================

    def add_task(self, kind: FeedbackTaskKind | str, payload: dict[str, Any] | None = None) -> str:
        """Enqueue a review task; returns its id."""
        task = FeedbackTask(kind=FeedbackTaskKind(kind), payload=payload or {})
        self._queue.put_nowait(task)
        if task.kind == FeedbackTaskKind.SYNTHESIZE_GENERAL:
            self._synthesis_queued = True
        logger.debug("Queued feedback task %s (%s)", task.id, task.kind.value)
        self._ensure_worker()
        return task.id

    def enqueue_for_call(self, call: LLMCall) -> None:
        """Completion hook: queue a review of a finished non-internal call."""
        self.add_task(task_kind_for_call(call.call_type), {
            "call_id": call.id,
            "call_type": call.call_type,
            "prompt": call.prompt,
            "response": call.response or "",
        })

    def pending_count(self) -> int:
        """Queued tasks plus the one in progress."""
        return self._queue.qsize() + (1 if self._processing else 0)

    async def join(self) -> None:
        """Wait until every queued task has been processed."""
        self._ensure_worker()
        await self._queue.join()

    def start(self) -> None:
        """Start the worker (requires a running event loop)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="feedback-memory-worker",
            )

    def _ensure_worker(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.start()

    async def stop(self) -> None:
        """Stop the worker; queued tasks stay queued."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            self._processing = True
            try:
                await self._process(task)
            except (LLMTransportError, MalformedResponseError) as e:
                logger.warning("Dropping feedback task %s (%s): %s", task.id, task.kind.value, e.message)
            except GameShaperError as e:
                logger.error("Feedback task %s failed: %s", task.id, e.message)
            except Exception:
                logger.exception("Unexpected error in feedback task %s", task.id)
            finally:
                self._processing = False
                self._queue.task_done()

    # =========================================================================
    # Document
    # =========================================================================

    def get_document(self) -> FeedbackDocument:
        return self._document.model_copy(deep=True)

    def load_document(self, document: FeedbackDocument) -> None:
        self._document = document.model_copy(deep=True)

    def reset_to_default(self) -> FeedbackDocument:
        """Restore every section to its default; the version keeps counting."""
        version = self._document.version + 1
        self._document = default_document()
        self._document.version = version
        self._document.updated_at = datetime.now(timezone.utc)
        self._synthesis_queued = False
        logger.info("Feedback document reset to default (version %d)", version)
        return self.get_document()

    def get_guidance(self, call_type: str) -> str | None:
        """Cached guidance for a call type, falling back to its task kind."""
        guidance = self._document.guidance
        return guidance.get(call_type) or guidance.get(task_kind_for_call(call_type).value)

    def context_summary(self, call_type: str | None = None) -> str | None:
        """Feedback-context system message for a call, or None when nothing is known yet."""
        general = self._document.general
        guidance = self.get_guidance(call_type) if call_type else None
        if is_default(FeedbackSection.GENERAL, general) and not guidance:
            return None
        return format_prompt(get_prompt("feedback_context"), {
            "general_memory": general,
            "guidance": guidance or "(none yet)",
        })

    # =========================================================================
    # Processing
    # =========================================================================

    def _prompt_values(self, task: FeedbackTask, section: FeedbackSection) -> dict[str, Any]:
        payload = task.payload
        values: dict[str, Any] = {
            "section": section.value,
            "current_section": self._document.section(section),
            "general_memory": self._document.general,
            "call_type": payload.get("call_type", task.kind.value),
            "prompt": _excerpt(payload.get("prompt", "")),
            "response": _excerpt(payload.get("response", "")),
            "before": _excerpt(payload.get("before", "")),
            "after": _excerpt(payload.get("after", "")),
        }
        if task.kind == FeedbackTaskKind.SYNTHESIZE_GENERAL:
            values["pending_insights"] = "\n".join(
                f"- {insight}" for insight in self._document.pending_insights
            ) or "(none)"
            values["recent_feedback"] = "\n".join(
                f"- [{item.call_type}] {item.feedback}" for item in self._document.recent_feedback
            ) or "(none)"
            values["feature_sections"] = "\n\n".join(
                self._document.section(other)
                for other in FeedbackSection
                if other != FeedbackSection.GENERAL
            )
        return values

    async def _process(self, task: FeedbackTask) -> None:
        section, prompt_name = TASK_ROUTES[task.kind]
        consumed_insights = len(self._document.pending_insights)
        prompt = format_prompt(get_prompt(prompt_name), self._prompt_values(task, section))

        result = await self._dispatcher.invoke(
            prompt_name,
            [{"role": "user", "content": prompt}],
            parser=parse_feedback_response,
            response_format={"type": "json_object"},
            internal=True,
        )
        response: FeedbackResponse = result.parsed
        changed = self._apply(task, section, response, consumed_insights)

        if changed and self._on_document_changed is not None:
            await self._on_document_changed(self.get_document())

    def _apply(
        self,
        task: FeedbackTask,
        section: FeedbackSection,
        response: FeedbackResponse,
        consumed_insights: int,
    ) -> bool:
        document = self._document
        changed = False
        source_call_type = task.payload.get("call_type") or task.kind.value

        if response.memory_update is not None:
            current = document.section(section)
            text, diagnostics = apply_section_update(
                section, current, response.memory_update, max_length=self._max_document_length,
            )
            for diagnostic in diagnostics:
                logger.info("Feedback task %s: %s", task.id, diagnostic.message)
            if text != current:
                setattr(document, section.value, text)
                changed = True

        if response.feedback:
            self._record_feedback(task, source_call_type, response.feedback)
            changed = True

        if response.guidance:
            document.guidance[source_call_type] = response.guidance
            changed = True

        if task.kind == FeedbackTaskKind.SYNTHESIZE_GENERAL:
            del document.pending_insights[:consumed_insights]
            self._synthesis_queued = False
            changed = True
        elif response.insight:
            document.pending_insights.append(response.insight)
            changed = True

        if changed:
            document.version += 1
            document.updated_at = datetime.now(timezone.utc)
            logger.info(
                "Feedback document updated by %s task %s (version %d)",
                task.kind.value, task.id, document.version,
            )

        if (
            len(document.pending_insights) >= self._consolidation_threshold
            and not self._synthesis_queued
        ):
            logger.info("Queuing general synthesis (%d pending insights)", len(document.pending_insights))
            self.add_task(FeedbackTaskKind.SYNTHESIZE_GENERAL, {})

        return changed

    def _record_feedback(self, task: FeedbackTask, call_type: str, feedback: str) -> None:
        call_id = task.payload.get("call_id")
        if call_id:
            try:
                self._dispatcher.ledger.attach_feedback(call_id, feedback)
            except (UnknownCallError, InvalidTransitionError) as e:
                logger.warning("Cannot attach feedback to %s: %s", call_id, e.message)

        recent = self._document.recent_feedback
        recent.append(RecentFeedback(call_id=call_id, call_type=call_type, feedback=feedback))
        del recent[:-self._recent_limit]
