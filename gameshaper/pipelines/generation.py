"""Generation Pipeline.

Sequences four stages per loop:

    planning -> searching -> generating -> validating -> completed | failed

- planning: targets, deletions, objectives, success rules and two search
  queries (broad, precise) from the user prompt and the entity snapshot
- searching: advisory context; a failed query yields no results and the
  loop still advances
- generating: one call per planned target, each answer parsed into a
  PatchRequest and applied to a working copy of the snapshot
- validating: partitions the success rules into validated and failed

Stage failures are recorded on the state as PipelineError entries and the
loop resolves to failed; nothing is raised past run(). The caller decides
whether to run another loop (manual mode) or run_to_completion loops while
the budget allows (automatic mode).

Only one run may be in flight per pipeline; a second one raises
PipelineBusyError. A discarded state stops at the next stage boundary.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from gameshaper.clients.dispatch import CallDispatcher
from gameshaper.clients.protocols import WebSearchProtocol
from gameshaper.core.exceptions import (
    GameShaperError,
    PipelineBusyError,
    PipelineStageError,
    SearchClientError,
)
from gameshaper.core.prompts import format_prompt, get_prompt
from gameshaper.patches.parsing import parse_target_diff, safe_json_parse
from gameshaper.patches.protocol import apply_patch
from gameshaper.schemas.entities import (
    Entity,
    format_entities_for_prompt,
    sanitize_for_prompt,
)
from gameshaper.schemas.patches import PatchRequest
from gameshaper.schemas.pipeline import (
    PipelineConfig,
    PipelineMode,
    PipelineStage,
    PipelineState,
    PlanningOutput,
    SearchResult,
    SearchResults,
    ValidationResult,
    is_new_entity_id,
)

logger = logging.getLogger(__name__)

StageCallback = Callable[[PipelineState], "Awaitable[None] | None"]

PLANNING_CALL = "generation_planning"
CONTENT_CALL = "generation_content"
VALIDATION_CALL = "generation_validation"

_JSON_FORMAT = {"type": "json_object"}
_NONE = "(none)"


def _format_search_results(results: list[SearchResult]) -> str:
    if not results:
        return "(no results)"
    return "\n".join(
        f"- {result.title} ({result.url}): {result.description}" for result in results
    )


def _format_rules(rules: list[str]) -> str:
    return "\n".join(f"- {rule}" for rule in rules) or _NONE


class GenerationPipeline:
    """Plan/search/generate/validate loop over an entity snapshot.

    Example:
        ```python
        pipeline = GenerationPipeline(dispatcher, search_client)
        state = await pipeline.run("Add a blacksmith to the village", entities)
        while state.can_continue:
            state = await pipeline.run_next_loop(state)
        ```
    """

    def __init__(
        self,
        dispatcher: CallDispatcher,
        search_client: WebSearchProtocol | None = None,
        *,
        max_search_results: int = 5,
        search_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the pipeline.

        Args:
            dispatcher: Dispatch boundary for every stage call
            search_client: Web search capability; None skips searching
            max_search_results: Results per query unless the config overrides it
            search_delay: Pause between the broad and the precise query
            sleep: Awaitable sleep (tests inject a no-op)
        """
        self._dispatcher = dispatcher
        self._search_client = search_client
        self._max_search_results = max_search_results
        self._search_delay = search_delay
        self._sleep = sleep
        self._busy = False

    @property
    def is_running(self) -> bool:
        return self._busy

    # =========================================================================
    # Entry Points
    # =========================================================================

    async def run(
        self,
        user_prompt: str,
        entities: list[Entity],
        config: PipelineConfig | None = None,
        on_stage_update: StageCallback | None = None,
    ) -> PipelineState:
        """Run the first loop for a new request."""
        config = config or PipelineConfig()
        state = PipelineState(
            mode=config.mode,
            max_loops=config.max_loops,
            user_prompt=user_prompt,
            max_search_results=config.max_search_results,
            original_entity_snapshot=[entity.model_copy(deep=True) for entity in entities],
            current_entity_snapshot=[entity.model_copy(deep=True) for entity in entities],
        )
        async with self._single_flight():
            await self._run_loop(state, on_stage_update)
        return state

    async def run_next_loop(
        self,
        state: PipelineState,
        on_stage_update: StageCallback | None = None,
    ) -> PipelineState:
        """Re-enter planning with the previous plan and failed rules as input.

        A state that cannot continue (completed, discarded or out of loops)
        is returned unchanged.
        """
        if not state.can_continue:
            logger.info(
                "Pipeline cannot continue (stage=%s, loop %d/%d, discarded=%s)",
                state.stage.value, state.current_loop, state.max_loops, state.discarded,
            )
            return state

        async with self._single_flight():
            state.current_loop += 1
            await self._run_loop(state, on_stage_update)
        return state

    async def run_to_completion(
        self,
        user_prompt: str,
        entities: list[Entity],
        config: PipelineConfig | None = None,
        on_stage_update: StageCallback | None = None,
    ) -> PipelineState:
        """Loop until success, discard, or the loop budget is spent."""
        config = config or PipelineConfig(mode=PipelineMode.AUTOMATIC)
        state = await self.run(user_prompt, entities, config, on_stage_update)
        while state.can_continue:
            state = await self.run_next_loop(state, on_stage_update)
        return state

    # =========================================================================
    # Loop
    # =========================================================================

    def _single_flight(self) -> "_SingleFlight":
        return _SingleFlight(self)

    async def _enter(
        self,
        state: PipelineState,
        stage: PipelineStage,
        on_stage_update: StageCallback | None,
    ) -> bool:
        """Move to ``stage``; False when the state was discarded meanwhile."""
        if state.discarded:
            logger.info("Pipeline discarded before %s (loop %d)", stage.value, state.current_loop)
            return False
        state.stage = stage
        await self._notify(state, on_stage_update)
        return True

    async def _notify(self, state: PipelineState, on_stage_update: StageCallback | None) -> None:
        if on_stage_update is None:
            return
        try:
            result = on_stage_update(state)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Stage update callback failed at %s", state.stage.value)

    async def _fail(
        self,
        state: PipelineState,
        stage: PipelineStage,
        error: str,
        on_stage_update: StageCallback | None,
    ) -> None:
        logger.warning("Pipeline loop %d failed at %s: %s", state.current_loop, stage.value, error)
        state.record_error(stage, error)
        state.stage = PipelineStage.FAILED
        await self._notify(state, on_stage_update)

    async def _run_loop(self, state: PipelineState, on_stage_update: StageCallback | None) -> None:
        previous_plan = state.planning_output
        previous_validation = state.validation_result
        previous_errors = [error for error in state.errors if error.loop == state.current_loop - 1]
        state.generated_diffs = None
        state.validation_result = None

        stage = PipelineStage.PLANNING
        try:
            if not await self._enter(state, stage, on_stage_update):
                return
            state.planning_output = await self._plan(state, previous_plan, previous_validation, previous_errors)

            stage = PipelineStage.SEARCHING
            if not await self._enter(state, stage, on_stage_update):
                return
            state.search_results = await self._search(state)

            stage = PipelineStage.GENERATING
            if not await self._enter(state, stage, on_stage_update):
                return
            diffs, working = await self._generate(state, previous_validation)
            if state.discarded:
                return
            state.generated_diffs = diffs

            stage = PipelineStage.VALIDATING
            if not await self._enter(state, stage, on_stage_update):
                return
            validation = await self._validate(state, working)
            if state.discarded:
                return
            state.validation_result = validation
        except GameShaperError as e:
            await self._fail(state, stage, e.message, on_stage_update)
            return
        except Exception as e:
            logger.exception("Unexpected error in pipeline stage %s", stage.value)
            message = f"{type(e).__name__}: {e}"
            await self._fail(state, stage, message, on_stage_update)
            return

        state.current_entity_snapshot = working
        if validation.passed:
            deletions = set(state.planning_output.delete_node_ids)
            state.final_entities = [entity for entity in working if entity.id not in deletions]
            state.stage = PipelineStage.COMPLETED
            logger.info(
                "Pipeline completed in loop %d/%d (%d rules validated)",
                state.current_loop, state.max_loops, len(validation.validated_rules),
            )
            await self._notify(state, on_stage_update)
            return

        await self._fail(
            state,
            PipelineStage.VALIDATING,
            f"{len(validation.failed_rules)} success rule(s) failed",
            on_stage_update,
        )

    # =========================================================================
    # Stages
    # =========================================================================

    async def _plan(
        self,
        state: PipelineState,
        previous_plan: PlanningOutput | None,
        previous_validation: ValidationResult | None,
        previous_errors: list[Any],
    ) -> PlanningOutput:
        failures: list[str] = []
        if previous_validation is not None:
            failures.extend(
                f"- [{failed.node_id or 'general'}] {failed.rule}: {failed.reason}"
                for failed in previous_validation.failed_rules
            )
        failures.extend(
            f"- {error.stage.value} stage error: {error.error}"
            for error in previous_errors
            if error.stage != PipelineStage.VALIDATING
        )

        prompt = format_prompt(get_prompt(PLANNING_CALL), {
            "nodes_description": format_entities_for_prompt(state.current_entity_snapshot),
            "user_prompt": state.user_prompt,
            "previous_plan": previous_plan.model_dump_json(by_alias=True) if previous_plan else _NONE,
            "previous_failures": "\n".join(failures) or _NONE,
        })

        result = await self._dispatcher.invoke(
            PLANNING_CALL,
            [{"role": "user", "content": prompt}],
            parser=lambda text: PlanningOutput.model_validate(
                safe_json_parse(text, call_type=PLANNING_CALL)
            ),
            response_format=_JSON_FORMAT,
        )
        plan: PlanningOutput = result.parsed
        logger.info(
            "Planned %d target(s) and %d deletion(s) for loop %d",
            len(plan.target_node_ids), len(plan.delete_node_ids), state.current_loop,
        )
        return plan

    async def _search(self, state: PipelineState) -> SearchResults:
        plan = state.planning_output
        if self._search_client is None or plan is None:
            return SearchResults()

        limit = state.max_search_results or self._max_search_results
        broad = await self._safe_search(plan.broad_query, limit)
        if self._search_delay > 0:
            await self._sleep(self._search_delay)
        precise = await self._safe_search(plan.precise_query, limit)
        return SearchResults(broad=broad, precise=precise)

    async def _safe_search(self, query: str, limit: int) -> list[SearchResult]:
        try:
            return await self._search_client.web_search(query, max_results=limit)
        except SearchClientError as e:
            logger.warning("Search for %r failed, continuing without results: %s", query, e.message)
            return []
        except Exception as e:
            logger.warning("Search for %r raised %s, continuing without results", query, type(e).__name__)
            return []

    async def _generate(
        self,
        state: PipelineState,
        previous_validation: ValidationResult | None,
    ) -> tuple[dict[str, PatchRequest], list[Entity]]:
        plan = state.planning_output
        search = state.search_results or SearchResults()
        working = [entity.model_copy(deep=True) for entity in state.current_entity_snapshot]
        failures_by_node: dict[str, list[str]] = {}
        if previous_validation is not None:
            for failed in previous_validation.failed_rules:
                failures_by_node.setdefault(failed.node_id, []).append(f"{failed.rule}: {failed.reason}")

        diffs: dict[str, PatchRequest] = {}
        for target_id in plan.target_node_ids:
            creating = is_new_entity_id(target_id)
            existing = next((entity for entity in working if entity.id == target_id), None)
            if existing is None and not creating:
                raise PipelineStageError(
                    f"planned target {target_id} does not exist", stage=PipelineStage.GENERATING.value,
                )

            prompt = format_prompt(get_prompt(CONTENT_CALL), {
                "all_nodes_context": format_entities_for_prompt(working),
                "node_operation_type": "CREATE_NEW_NODE" if creating else "EDIT_EXISTING_NODE",
                "target_node_id": target_id,
                "original_node": json.dumps(sanitize_for_prompt(existing), ensure_ascii=False) if existing else _NONE,
                "user_prompt": state.user_prompt,
                "objectives": plan.objectives or _NONE,
                "success_rules": _format_rules(plan.success_rules),
                "previous_failures": "\n".join(
                    f"- {item}" for item in failures_by_node.get(target_id, [])
                ) or _NONE,
                "broad_query": plan.broad_query,
                "broad_results": _format_search_results(search.broad),
                "precise_query": plan.precise_query,
                "precise_results": _format_search_results(search.precise),
            })

            result = await self._dispatcher.invoke(
                CONTENT_CALL,
                [{"role": "user", "content": prompt}],
                parser=lambda text, target=target_id: parse_target_diff(
                    target, safe_json_parse(text, call_type=CONTENT_CALL)
                ),
                response_format=_JSON_FORMAT,
            )
            if state.discarded:
                return diffs, working

            patch: PatchRequest = result.parsed
            working, summary = apply_patch(working, patch)
            for diagnostic in summary.diagnostics:
                logger.warning("Generated diff for %s: %s", target_id, diagnostic.message)
            diffs[target_id] = patch

        return diffs, working

    async def _validate(self, state: PipelineState, working: list[Entity]) -> ValidationResult:
        plan = state.planning_output
        touched: set[str] = set()
        for patch in (state.generated_diffs or {}).values():
            touched.update(entity.id for entity in patch.new_entities)
            touched.update(patch.updates)
        edited = [sanitize_for_prompt(entity) for entity in working if entity.id in touched]

        prompt = format_prompt(get_prompt(VALIDATION_CALL), {
            "nodes_description": format_entities_for_prompt(working),
            "edited_nodes": json.dumps(edited, ensure_ascii=False, indent=2) if edited else _NONE,
            "success_rules": _format_rules(plan.success_rules),
        })

        result = await self._dispatcher.invoke(
            VALIDATION_CALL,
            [{"role": "user", "content": prompt}],
            parser=lambda text: ValidationResult.model_validate(
                safe_json_parse(text, call_type=VALIDATION_CALL)
            ),
            response_format=_JSON_FORMAT,
        )
        validation: ValidationResult = result.parsed
        logger.info(
            "Validation loop %d: %d passed, %d failed",
            state.current_loop, len(validation.validated_rules), len(validation.failed_rules),
        )
        return validation


class _SingleFlight:
    """Async context manager rejecting overlapping pipeline runs."""

    def __init__(self, pipeline: GenerationPipeline) -> None:
        self._pipeline = pipeline

    async def __aenter__(self) -> None:
        if self._pipeline._busy:
            raise PipelineBusyError()
        self._pipeline._busy = True

    async def __aexit__(self, *exc_info: object) -> None:
        self._pipeline._busy = False
