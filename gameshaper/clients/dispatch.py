"""Call Dispatch Boundary.

Every outbound LLM call goes through CallDispatcher.invoke, which:

1. records a ledger entry (queued -> running) and binds its call_id and
   call_type to every log entry emitted until the call settles
2. optionally prepends the feedback-memory context as a system message
3. calls the completion capability, retrying retryable transport errors
   with bounded exponential backoff
4. accumulates a streamed answer into one text
5. runs the optional parser; a parse failure marks the entry failed with
   the raw response attached and raises MalformedResponseError
6. marks the entry completed
7. for reviewed call types, hands the finished entry to the completion
   hooks (the feedback memory enqueues a review task)

Internal call types (feedback reviews, system events) never get the
feedback context and never trigger a review, which would otherwise loop.

Retry and backoff live only here, never in the ledger or protocol layers.

Pattern: Retry with exponential backoff
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gameshaper.clients.protocols import ChatCompletionProtocol
from gameshaper.clients.streaming import accumulate_stream
from gameshaper.core.exceptions import (
    LLMTransportError,
    MalformedResponseError,
    PatchValidationError,
)
from gameshaper.core.logging import bind_call_context
from gameshaper.core.prompts import get_model_override, get_task_options
from gameshaper.ledger.call_ledger import CallLedger
from gameshaper.schemas.ledger import LLMCall


logger = logging.getLogger(__name__)

# Call types produced by the system itself
INTERNAL_CALL_PREFIXES = ("feedback_", "internal_")

# Generation pipeline stages are reviewed through their validation stage,
# not by the feedback memory.
UNREVIEWED_CALL_PREFIXES = ("generation_",)

ResponseParser = Callable[[str], Any]
ContextProvider = Callable[[str], "str | None"]
CompletionHook = Callable[[LLMCall], None]


def is_internal_call_type(call_type: str) -> bool:
    """Check if a call type is a system-internal call."""
    return call_type.startswith(INTERNAL_CALL_PREFIXES)


def should_review(call_type: str) -> bool:
    """Check if a completed call of this type gets a feedback review task."""
    return not (
        is_internal_call_type(call_type) or call_type.startswith(UNREVIEWED_CALL_PREFIXES)
    )


def format_messages_for_ledger(messages: list[dict[str, str]]) -> str:
    """Flatten chat messages into the ledger prompt text."""
    return "\n\n".join(f"{msg.get('role', 'user')}: {msg.get('content', '')}" for msg in messages)


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for retryable transport errors."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0, le=10, description="Maximum number of retry attempts")
    backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0, description="Exponential backoff multiplier")
    initial_delay: float = Field(default=1.0, ge=0.0, le=60.0, description="Delay before the first retry")
    max_delay: float = Field(default=30.0, ge=0.0, description="Upper bound of a single delay")

    def delay_for(self, retry: int) -> float:
        """Delay in seconds before retry number ``retry`` (1-indexed)."""
        return min(self.max_delay, self.initial_delay * (self.backoff_factor ** (retry - 1)))


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a successful dispatch.

    Attributes:
        call_id: Ledger entry of the call
        text: Full response text
        parsed: Parser output, or None when no parser was given
        attempts: Number of provider attempts made
    """

    call_id: str
    text: str
    parsed: Any = None
    attempts: int = 1


class CallDispatcher:
    """Routes LLM calls through the ledger with retries and parsing.

    Example:
        ```python
        dispatcher = CallDispatcher(client, ledger)
        result = await dispatcher.invoke(
            "node_edition",
            [{"role": "user", "content": prompt}],
            parser=parse_patch_text,
            response_format={"type": "json_object"},
        )
        ```
    """

    def __init__(
        self,
        client: ChatCompletionProtocol,
        ledger: CallLedger,
        *,
        retry_policy: RetryPolicy | None = None,
        default_model: str | None = None,
        context_provider: ContextProvider | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            client: Completion capability
            ledger: Ledger recording every call
            retry_policy: Backoff policy, defaults to RetryPolicy()
            default_model: Model when neither caller nor model_tasks.yaml picks one
            context_provider: Returns the feedback-context system message for a call type
            sleep: Awaitable sleep (tests inject a no-op)
        """
        self._client = client
        self._ledger = ledger
        self._retry_policy = retry_policy or RetryPolicy()
        self._default_model = default_model
        self._context_provider = context_provider
        self._sleep = sleep
        self._completion_hooks: list[CompletionHook] = []

    @property
    def ledger(self) -> CallLedger:
        return self._ledger

    def set_context_provider(self, provider: ContextProvider | None) -> None:
        self._context_provider = provider

    def add_completion_hook(self, hook: CompletionHook) -> None:
        """Register a hook called with each completed non-internal call."""
        self._completion_hooks.append(hook)

    def _resolve_model(self, call_type: str, model: str | None) -> str | None:
        return model or get_model_override(call_type) or self._default_model

    def _with_context(self, call_type: str, messages: list[dict[str, str]]) -> list[dict[str, str]]:
        if self._context_provider is None:
            return messages
        context = self._context_provider(call_type)
        if not context:
            return messages
        return [{"role": "system", "content": context}, *messages]

    async def _complete_with_retry(
        self,
        call_id: str,
        messages: list[dict[str, str]],
        model: str | None,
        response_format: dict[str, Any] | None,
        stream: bool,
        options: dict[str, Any],
    ) -> tuple[str, int]:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._client.complete_chat(
                    messages,
                    model=model,
                    response_format=response_format,
                    stream=stream,
                    **options,
                )
                if not isinstance(result, str):
                    result = await accumulate_stream(result)
                return result, attempt
            except LLMTransportError as e:
                retry = attempt
                if not e.retryable or retry > self._retry_policy.max_retries:
                    raise
                delay = self._retry_policy.delay_for(retry)
                logger.warning(
                    "Retrying call %s (retry %d/%d in %.1fs): %s",
                    call_id, retry, self._retry_policy.max_retries, delay, e.message,
                )
                await self._sleep(delay)

    async def invoke(
        self,
        call_type: str,
        messages: list[dict[str, str]],
        *,
        parser: ResponseParser | None = None,
        model: str | None = None,
        response_format: dict[str, Any] | None = None,
        stream: bool = False,
        internal: bool | None = None,
        options: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Dispatch one LLM call.

        Args:
            call_type: Ledger call type, also the model_tasks.yaml key
            messages: Chat messages
            parser: Converts the response text; any error it raises fails
                the call and surfaces as MalformedResponseError
            model: Explicit model, overrides model_tasks.yaml
            response_format: Response format hint for the provider
            stream: Ask the provider for a streamed answer
            internal: Skip feedback context and review; derived from call_type when None
            options: Completion options, override model_tasks.yaml

        Returns:
            DispatchResult with the call id, text and parsed value

        Raises:
            LLMTransportError: When retries are exhausted or the error is not retryable
            MalformedResponseError: When the parser rejects the response
        """
        is_internal = is_internal_call_type(call_type) if internal is None else internal
        resolved_model = self._resolve_model(call_type, model)
        call_options = {**get_task_options(call_type), **(options or {})}
        if not is_internal and not stream:
            messages = self._with_context(call_type, messages)

        call_id = self._ledger.begin(
            call_type,
            format_messages_for_ledger(messages),
            model=resolved_model,
        )

        with bind_call_context(call_id, call_type):
            try:
                text, attempts = await self._complete_with_retry(
                    call_id, messages, resolved_model, response_format, stream, call_options,
                )
            except LLMTransportError as e:
                self._ledger.fail(call_id, e.message)
                raise
            except asyncio.CancelledError:
                self._ledger.fail(call_id, "cancelled")
                raise
            except Exception as e:
                self._ledger.fail(call_id, f"{type(e).__name__}: {e}")
                raise

            parsed: Any = None
            if parser is not None:
                try:
                    parsed = parser(text)
                except MalformedResponseError as e:
                    self._ledger.fail(call_id, e.message, response=text)
                    e.call_type = e.call_type or call_type
                    e.raw_response = e.raw_response or text
                    raise
                except Exception as e:
                    if isinstance(e, PatchValidationError):
                        message = e.message
                    elif isinstance(e, ValidationError):
                        message = f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}"
                    elif isinstance(e, ValueError):
                        message = str(e)
                    else:
                        message = f"{type(e).__name__}: {e}"
                    self._ledger.fail(call_id, message, response=text)
                    raise MalformedResponseError(
                        message, call_type=call_type, raw_response=text,
                    ) from e

            self._ledger.complete(call_id, text)

        # Outside the bound context: a hook may start a long-lived task
        if not is_internal and should_review(call_type):
            entry = self._ledger.get(call_id)
            for hook in self._completion_hooks:
                hook(entry)

        return DispatchResult(call_id=call_id, text=text, parsed=parsed, attempts=attempts)
