"""GameShaper Session.

The explicit context object for one authoring session. It is created once
with settings and capabilities and owns every stateful component:

    CallLedger          every outbound call and system event
    EntityGraphStore    canonical entity snapshot (patches are its only writer)
    CallDispatcher      ledger + retries + feedback context for each call
    FeedbackMemory      review task queue and feedback document
    GenerationPipeline  plan/search/generate/validate loops
    ImageRegenerationQueue  side-effect image requests for flagged entities

Persistence goes through one SessionSnapshot blob handed to the snapshot
store; there is no partial persistence.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

from gameshaper.clients.dispatch import CallDispatcher, RetryPolicy
from gameshaper.clients.images import HTTPImageClient
from gameshaper.clients.inference import OpenAICompatibleChatClient
from gameshaper.clients.protocols import (
    ChatCompletionProtocol,
    ImageGenerationProtocol,
    SnapshotStoreProtocol,
    WebSearchProtocol,
)
from gameshaper.clients.search import BraveSearchClient
from gameshaper.clients.snapshot_store import JsonFileSnapshotStore
from gameshaper.core.config import Settings, get_settings
from gameshaper.core.exceptions import GameShaperError, SnapshotError
from gameshaper.core.logging import get_logger
from gameshaper.core.prompts import format_prompt, get_prompt
from gameshaper.feedback.memory import FeedbackMemory
from gameshaper.graph.images import ImageBatchResult, ImageRegenerationQueue
from gameshaper.graph.store import EntityGraphStore
from gameshaper.ledger.call_ledger import CallLedger, LedgerListener
from gameshaper.patches.parsing import parse_patch_text, safe_json_parse
from gameshaper.patches.protocol import diff_snapshots
from gameshaper.pipelines.generation import GenerationPipeline, StageCallback
from gameshaper.schemas.chat import (
    ActionSuggestions,
    AssistantResult,
    ChatRole,
    ChatTurn,
    UserInputResult,
)
from gameshaper.schemas.entities import Entity, format_entities_for_prompt, sanitize_for_prompt
from gameshaper.schemas.feedback import FeedbackDocument, FeedbackTaskKind
from gameshaper.schemas.patches import PatchRequest, PatchSummary
from gameshaper.schemas.pipeline import PipelineConfig, PipelineMode, PipelineStage, PipelineState
from gameshaper.schemas.session import SessionSnapshot

logger = get_logger(__name__)

EDIT_CALL = "node_edition"
CHAT_CALL = "chat_text"
ACTIONS_CALL = "action_suggestions"
ASSISTANT_CALL = "assistant_request"
MANUAL_EDIT_EVENT = "internal_manual_edit"

# Chat turns quoted back into the narration prompt
CHAT_HISTORY_WINDOW = 5


class GameShaperSession:
    """Owns the ledger, graph, feedback memory and pipeline of one session.

    Example:
        ```python
        session = GameShaperSession.from_settings(get_settings())
        await session.start()
        patch = await session.submit_user_edit("Make the sword gleam")
        await session.aclose()
        ```
    """

    def __init__(
        self,
        completion_client: ChatCompletionProtocol,
        *,
        settings: Settings | None = None,
        search_client: WebSearchProtocol | None = None,
        image_client: ImageGenerationProtocol | None = None,
        snapshot_store: SnapshotStoreProtocol | None = None,
        entities: list[Entity] | None = None,
        sleep: Callable | None = None,
    ) -> None:
        """Wire the session components.

        Args:
            completion_client: LLM completion capability
            settings: Service settings, defaults to get_settings()
            search_client: Web search capability for the pipeline
            image_client: Image capability; None disables regeneration
            snapshot_store: Persistence capability; None disables persist/restore
            entities: Initial entity snapshot
            sleep: Awaitable sleep for retries and search pacing (tests inject a no-op)
        """
        self.settings = settings or get_settings()
        self._completion_client = completion_client
        self._search_client = search_client
        self._image_client = image_client
        self._snapshot_store = snapshot_store
        sleep_kwargs = {"sleep": sleep} if sleep is not None else {}

        self.ledger = CallLedger(truncate_length=self.settings.ledger_truncate_length)
        self.graph = EntityGraphStore(entities)
        self.chat_history: list[ChatTurn] = []
        self.dispatcher = CallDispatcher(
            completion_client,
            self.ledger,
            retry_policy=RetryPolicy(
                max_retries=self.settings.max_retries,
                backoff_factor=self.settings.retry_backoff_factor,
                initial_delay=self.settings.retry_initial_delay,
                max_delay=self.settings.retry_max_delay,
            ),
            default_model=self.settings.default_model,
            **sleep_kwargs,
        )
        self.feedback = FeedbackMemory(
            self.dispatcher,
            recent_limit=self.settings.feedback_recent_limit,
            consolidation_threshold=self.settings.feedback_consolidation_threshold,
            max_document_length=self.settings.feedback_max_document_length,
            on_document_changed=self._on_feedback_changed,
        )
        if self.settings.include_feedback_context:
            self.dispatcher.set_context_provider(self.feedback.context_summary)
        self.dispatcher.add_completion_hook(self.feedback.enqueue_for_call)

        self.pipeline = GenerationPipeline(
            self.dispatcher,
            search_client,
            max_search_results=self.settings.max_search_results,
            search_delay=self.settings.search_delay_seconds,
            **sleep_kwargs,
        )
        self.images = (
            ImageRegenerationQueue(
                image_client, self.graph, self.ledger, batch_limit=self.settings.image_batch_limit,
            )
            if image_client is not None
            else None
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GameShaperSession":
        """Build a session with the shipped HTTP capabilities."""
        settings = settings or get_settings()
        return cls(
            OpenAICompatibleChatClient(
                base_url=settings.llm_base_url,
                api_key=settings.llm_api_key.get_secret_value(),
                default_model=settings.default_model,
                timeout=settings.llm_timeout_seconds,
            ),
            settings=settings,
            search_client=BraveSearchClient(
                base_url=settings.search_base_url,
                api_key=settings.search_api_key.get_secret_value(),
                timeout=settings.search_timeout_seconds,
            ),
            image_client=HTTPImageClient(
                base_url=settings.image_base_url,
                api_key=settings.image_api_key.get_secret_value(),
                timeout=settings.image_timeout_seconds,
            ),
            snapshot_store=JsonFileSnapshotStore(settings.snapshot_path),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the feedback worker (requires a running event loop)."""
        self.feedback.start()
        logger.info("Session started", entities=len(self.graph))

    async def aclose(self) -> None:
        """Stop the worker and close every capability client."""
        await self.feedback.stop()
        for client in (self._completion_client, self._search_client, self._image_client):
            if client is not None:
                await client.close()
        logger.info("Session closed")

    # =========================================================================
    # Edits
    # =========================================================================

    async def submit_user_edit(self, prompt: str) -> PatchRequest:
        """Single-shot edit: ask the model for a patch and apply it.

        Raises:
            LLMTransportError: When the call fails after retries
            MalformedResponseError: When the answer is not a usable patch
        """
        patch, _ = await self._edit(prompt)
        await self.process_images()
        return patch

    async def submit_user_input(self, user_input: str) -> UserInputResult:
        """Chat interaction: narrate, then suggest actions and edit the world.

        The narration is streamed first. Action suggestions and the world
        edit then run concurrently, both seeing the narration. A failed
        suggestion call leaves the actions empty; a failed edit raises after
        the narration is already recorded in the chat history.

        Raises:
            LLMTransportError: When the narration or the edit call fails
            MalformedResponseError: When the edit answer is not a usable patch
        """
        nodes_description = format_entities_for_prompt(self.graph.snapshot())
        message = format_prompt(get_prompt(CHAT_CALL), {
            "nodes_description": nodes_description,
            "chat_history": self._format_chat_history(),
            "chat_notes": self.feedback.get_document().chat_text,
            "user_input": user_input,
        })
        narration = await self.dispatcher.invoke(
            CHAT_CALL,
            [{"role": "user", "content": message}],
            stream=True,
        )
        chat_text = narration.text.strip()
        self.chat_history.append(ChatTurn(role=ChatRole.USER, content=user_input))
        self.chat_history.append(ChatTurn(role=ChatRole.ASSISTANT, content=chat_text))

        actions, edited = await asyncio.gather(
            self._suggest_actions(nodes_description, chat_text, user_input),
            self._edit(user_input, chat_context=chat_text),
            return_exceptions=True,
        )
        if isinstance(edited, BaseException):
            raise edited
        if isinstance(actions, BaseException):
            if not isinstance(actions, GameShaperError):
                raise actions
            logger.warning("Action suggestions failed", error=actions.message)
            actions = []

        patch, summary = edited
        await self.process_images()
        return UserInputResult(chat_text=chat_text, actions=actions, patch=patch, summary=summary)

    async def submit_assistant_request(self, prompt: str) -> AssistantResult:
        """Reshape the world on request, guided by every feedback section.

        Raises:
            LLMTransportError: When the call fails after retries
            MalformedResponseError: When the answer is not a usable patch
        """
        document = self.feedback.get_document()
        message = format_prompt(get_prompt(ASSISTANT_CALL), {
            "user_prompt": prompt,
            "general_memory": document.general,
            "chat_notes": document.chat_text,
            "edit_notes": document.node_edition,
            "assistant_notes": document.assistant_feedback,
            "nodes_description": format_entities_for_prompt(self.graph.snapshot()),
        })
        patch, summary = await self._apply_patch_call(ASSISTANT_CALL, message)
        await self.process_images()
        return AssistantResult(patch=patch, summary=summary)

    async def _edit(self, prompt: str, chat_context: str = "(none)") -> tuple[PatchRequest, PatchSummary]:
        message = format_prompt(get_prompt(EDIT_CALL), {
            "nodes_description": format_entities_for_prompt(self.graph.snapshot()),
            "chat_context": chat_context,
            "user_prompt": prompt,
        })
        return await self._apply_patch_call(EDIT_CALL, message)

    async def _apply_patch_call(self, call_type: str, message: str) -> tuple[PatchRequest, PatchSummary]:
        result = await self.dispatcher.invoke(
            call_type,
            [{"role": "user", "content": message}],
            parser=lambda text: parse_patch_text(text, call_type=call_type),
            response_format={"type": "json_object"},
        )
        patch: PatchRequest = result.parsed
        if patch.quarantined:
            logger.warning(
                "Patch fragments quarantined",
                call_id=result.call_id,
                call_type=call_type,
                quarantined=len(patch.quarantined),
            )
        summary = self.graph.apply_patch(patch, prune_links=self.settings.prune_links_after_patch)
        return patch, summary

    async def _suggest_actions(self, nodes_description: str, chat_text: str, user_input: str) -> list[str]:
        message = format_prompt(get_prompt(ACTIONS_CALL), {
            "nodes_description": nodes_description,
            "chat_text": chat_text,
            "user_input": user_input,
        })
        result = await self.dispatcher.invoke(
            ACTIONS_CALL,
            [{"role": "user", "content": message}],
            parser=lambda text: ActionSuggestions.model_validate(safe_json_parse(text, call_type=ACTIONS_CALL)),
            response_format={"type": "json_object"},
        )
        return result.parsed.actions

    def _format_chat_history(self) -> str:
        turns = self.chat_history[-CHAT_HISTORY_WINDOW:]
        if not turns:
            return "(none)"
        return "\n".join(f"{turn.role.value}: {turn.content}" for turn in turns)

    async def record_manual_edit(self, before: list[Entity], after: list[Entity]) -> PatchSummary:
        """Apply a hand edit and queue its analysis for the feedback memory."""
        summary = self.graph.apply_patch(
            diff_snapshots(before, after), prune_links=self.settings.prune_links_after_patch,
        )
        before_text = json.dumps([sanitize_for_prompt(entity) for entity in before], ensure_ascii=False)
        after_text = json.dumps([sanitize_for_prompt(entity) for entity in after], ensure_ascii=False)
        call_id = self.ledger.record_event(MANUAL_EDIT_EVENT, before_text, after_text)
        self.feedback.add_task(FeedbackTaskKind.MANUAL_EDIT_ANALYSIS, {
            "call_id": call_id,
            "call_type": MANUAL_EDIT_EVENT,
            "before": before_text,
            "after": after_text,
        })
        return summary

    async def process_images(self) -> ImageBatchResult | None:
        if self.images is None:
            return None
        return await self.images.process_pending()

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def run_pipeline(
        self,
        prompt: str,
        config: PipelineConfig | None = None,
        on_stage_update: StageCallback | None = None,
    ) -> PipelineState:
        """Run the generation pipeline on the current snapshot.

        Automatic mode loops until success or the loop budget is spent;
        manual mode returns after the first loop.
        """
        config = config or PipelineConfig(max_loops=self.settings.pipeline_max_loops)
        entities = self.graph.snapshot()
        if config.mode == PipelineMode.AUTOMATIC:
            return await self.pipeline.run_to_completion(prompt, entities, config, on_stage_update)
        return await self.pipeline.run(prompt, entities, config, on_stage_update)

    async def run_next_loop(
        self,
        state: PipelineState,
        on_stage_update: StageCallback | None = None,
    ) -> PipelineState:
        return await self.pipeline.run_next_loop(state, on_stage_update)

    async def apply_pipeline_result(self, state: PipelineState) -> PatchSummary | None:
        """Apply a completed pipeline's changes to the canonical graph.

        Discarded or unfinished states are not applied.
        """
        if state.discarded or state.stage != PipelineStage.COMPLETED or state.final_entities is None:
            logger.info(
                "Pipeline result not applied",
                stage=state.stage.value,
                discarded=state.discarded,
            )
            return None
        patch = diff_snapshots(state.original_entity_snapshot, state.final_entities)
        summary = self.graph.apply_patch(patch, prune_links=self.settings.prune_links_after_patch)
        await self.process_images()
        return summary

    def discard_pipeline(self, state: PipelineState) -> None:
        state.discard()

    # =========================================================================
    # Observation
    # =========================================================================

    def get_pending_task_count(self) -> int:
        """Outstanding LLM calls plus queued feedback tasks."""
        return self.ledger.pending_count() + self.feedback.pending_count()

    def subscribe_to_ledger(self, listener: LedgerListener) -> Callable[[], None]:
        return self.ledger.subscribe(listener)

    def get_feedback_document(self) -> FeedbackDocument:
        return self.feedback.get_document()

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            entities=self.graph.snapshot(),
            ledger=self.ledger.to_snapshot(),
            feedback=self.feedback.get_document(),
            chat_history=list(self.chat_history),
        )

    async def persist(self) -> None:
        """Write the whole session through the snapshot store.

        Raises:
            SnapshotError: When no store is configured or the write fails
        """
        if self._snapshot_store is None:
            raise SnapshotError("No snapshot store configured")
        snapshot = self.to_snapshot()
        await self._snapshot_store.persist_snapshot(snapshot.model_dump_json())
        logger.info(
            "Session persisted",
            entities=len(snapshot.entities),
            ledger_entries=len(snapshot.ledger),
        )

    async def _on_feedback_changed(self, document: FeedbackDocument) -> None:
        if self._snapshot_store is None:
            return
        try:
            await self.persist()
        except SnapshotError as e:
            logger.error("Persisting feedback document failed", version=document.version, error=e.message)

    async def restore(self) -> bool:
        """Load the last persisted session; False when there is none.

        Raises:
            SnapshotError: When no store is configured or the blob is unreadable
        """
        if self._snapshot_store is None:
            raise SnapshotError("No snapshot store configured")
        blob = await self._snapshot_store.load_snapshot()
        if blob is None:
            return False
        try:
            snapshot = SessionSnapshot.model_validate_json(blob)
        except ValueError as e:
            raise SnapshotError(f"Unreadable session snapshot: {e}") from e

        self.graph.replace_all(snapshot.entities)
        self.ledger.load_snapshot(snapshot.ledger)
        if snapshot.feedback is not None:
            self.feedback.load_document(snapshot.feedback)
        self.chat_history = list(snapshot.chat_history)
        logger.info(
            "Session restored",
            entities=len(snapshot.entities),
            ledger_entries=len(snapshot.ledger),
            chat_turns=len(snapshot.chat_history),
        )
        return True
