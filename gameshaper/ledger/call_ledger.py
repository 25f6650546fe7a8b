"""LLM Call Ledger.

In-memory, append-only registry of every outbound model call and internal
system event, with lifecycle tracking and synchronous subscriber
notification.

Lifecycle:
    queued -> running -> completed | failed

No entry ever regresses; terminal entries only accept ``feedback``.
Every transition notifies every subscriber, in application order, with the
full current list. A listener that raises is logged and skipped; delivery
to the remaining listeners continues.

Pattern: Observer over an append-only log
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from gameshaper.core.exceptions import InvalidTransitionError, UnknownCallError
from gameshaper.schemas.ledger import CallStatus, LLMCall

logger = logging.getLogger(__name__)

LedgerListener = Callable[[list[LLMCall]], None]

DEFAULT_TRUNCATE_LENGTH = 5000
ERROR_TRUNCATE_LENGTH = 1000
TRUNCATION_MARKER = "... [truncated]"

# Allowed status transitions
_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.QUEUED: frozenset({CallStatus.RUNNING}),
    CallStatus.RUNNING: frozenset({CallStatus.COMPLETED, CallStatus.FAILED}),
    CallStatus.COMPLETED: frozenset(),
    CallStatus.FAILED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(text: str | None, limit: int) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class CallLedger:
    """Registry of LLM call lifecycles.

    Example:
        ```python
        ledger = CallLedger()
        call_id = ledger.begin("node_edition", prompt)
        ledger.complete(call_id, response_text)
        ```
    """

    def __init__(self, truncate_length: int = DEFAULT_TRUNCATE_LENGTH) -> None:
        self._truncate_length = truncate_length
        self._entries: dict[str, LLMCall] = {}
        self._listeners: list[LedgerListener] = []

    # =========================================================================
    # Transitions
    # =========================================================================

    def begin(
        self,
        call_type: str,
        prompt: str,
        *,
        model: str | None = None,
        dispatch: bool = True,
    ) -> str:
        """Record a new call.

        The entry is inserted as ``queued``; with ``dispatch`` it moves to
        ``running`` immediately, producing two notifications.

        Returns:
            The new call id
        """
        call_id = f"{call_type}-{uuid.uuid4().hex[:12]}"
        self._entries[call_id] = LLMCall(
            id=call_id,
            call_type=call_type,
            model=model,
            status=CallStatus.QUEUED,
            start_time=_now(),
            prompt=_truncate(prompt, self._truncate_length) or "",
        )
        logger.debug("Ledger %s: queued (%s)", call_id, call_type)
        self._notify()
        if dispatch:
            self.mark_running(call_id)
        return call_id

    def mark_running(self, call_id: str) -> None:
        self._transition(call_id, CallStatus.RUNNING)

    def complete(self, call_id: str, response: str) -> None:
        """Mark a running call completed with its response."""
        self._transition(
            call_id,
            CallStatus.COMPLETED,
            response=_truncate(response, self._truncate_length),
        )

    def fail(self, call_id: str, error: str, *, response: str | None = None) -> None:
        """Mark a running call failed; ``response`` keeps a raw unparsable answer."""
        self._transition(
            call_id,
            CallStatus.FAILED,
            error=_truncate(error, ERROR_TRUNCATE_LENGTH),
            response=_truncate(response, self._truncate_length),
        )

    def attach_feedback(self, call_id: str, feedback: str) -> None:
        """Attach review feedback to a terminal entry."""
        entry = self.get(call_id)
        if not entry.status.is_terminal:
            raise InvalidTransitionError(call_id, entry.status.value, "feedback")
        self._entries[call_id] = entry.model_copy(
            update={"feedback": _truncate(feedback, self._truncate_length)}
        )
        self._notify()

    def record_event(self, call_type: str, prompt: str, response: str) -> str:
        """Record an internal system event as an already completed entry."""
        call_id = self.begin(call_type, prompt)
        self.complete(call_id, response)
        return call_id

    def _transition(self, call_id: str, status: CallStatus, **changes: object) -> None:
        entry = self.get(call_id)
        if status not in _TRANSITIONS[entry.status]:
            raise InvalidTransitionError(call_id, entry.status.value, status.value)

        update: dict[str, object] = {"status": status}
        if status.is_terminal:
            end_time = _now()
            update["end_time"] = end_time
            update["duration_ms"] = max(
                0, int((end_time - entry.start_time).total_seconds() * 1000)
            )
        update.update({key: value for key, value in changes.items() if value is not None})

        self._entries[call_id] = entry.model_copy(update=update)
        if status == CallStatus.FAILED:
            logger.warning("Ledger %s: failed (%s): %s", call_id, entry.call_type, changes.get("error"))
        else:
            logger.debug("Ledger %s: %s (%s)", call_id, status.value, entry.call_type)
        self._notify()

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, call_id: str) -> LLMCall:
        try:
            return self._entries[call_id]
        except KeyError:
            raise UnknownCallError(call_id) from None

    def entries(self) -> list[LLMCall]:
        """All entries in insertion order."""
        return list(self._entries.values())

    def pending_count(self) -> int:
        """Number of entries in ``queued`` or ``running``."""
        return sum(1 for entry in self._entries.values() if entry.status.is_pending)

    def __len__(self) -> int:
        return len(self._entries)

    # =========================================================================
    # Subscribers
    # =========================================================================

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.entries()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Ledger listener %r raised; continuing delivery", listener)

    # =========================================================================
    # Destructive / persistence
    # =========================================================================

    def clear(self) -> None:
        """Drop every entry (explicit, user-triggered)."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("Ledger cleared (%d entries)", count)
        self._notify()

    def to_snapshot(self) -> list[LLMCall]:
        return self.entries()

    def load_snapshot(self, entries: list[LLMCall]) -> None:
        """Replace the log with persisted entries.

        Entries restored as pending can never complete in this process, so
        they are marked failed.
        """
        self._entries = {}
        for entry in entries:
            if entry.status.is_pending:
                entry = entry.model_copy(update={
                    "status": CallStatus.FAILED,
                    "error": "interrupted by session restore",
                    "end_time": entry.end_time or entry.start_time,
                })
            self._entries[entry.id] = entry
        logger.info("Ledger restored (%d entries)", len(self._entries))
        self._notify()
