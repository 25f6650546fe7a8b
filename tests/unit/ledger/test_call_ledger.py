"""Tests for CallLedger lifecycle, subscribers and persistence."""

from collections import defaultdict

import pytest

from gameshaper.core.exceptions import InvalidTransitionError, UnknownCallError
from gameshaper.ledger.call_ledger import TRUNCATION_MARKER, CallLedger
from gameshaper.schemas.ledger import CallStatus, LLMCall


def _status_trace(ledger: CallLedger) -> dict[str, list[CallStatus]]:
    """Subscribe and collect the distinct statuses observed per call id."""
    observed: dict[str, list[CallStatus]] = defaultdict(list)

    def listener(entries: list[LLMCall]) -> None:
        for entry in entries:
            trace = observed[entry.id]
            if not trace or trace[-1] != entry.status:
                trace.append(entry.status)

    ledger.subscribe(listener)
    return observed


class TestLifecycle:
    """Tests for begin/complete/fail transitions."""

    def test_begin_dispatches_to_running(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "prompt")

        entry = ledger.get(call_id)
        assert entry.status == CallStatus.RUNNING
        assert call_id.startswith("node_edition-")

    def test_begin_without_dispatch_stays_queued(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "prompt", dispatch=False)

        assert ledger.get(call_id).status == CallStatus.QUEUED
        assert ledger.pending_count() == 1

    def test_complete_records_response_and_duration(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "prompt", model="gpt-4o")

        ledger.complete(call_id, "answer")

        entry = ledger.get(call_id)
        assert entry.status == CallStatus.COMPLETED
        assert entry.response == "answer"
        assert entry.model == "gpt-4o"
        assert entry.end_time is not None
        assert entry.duration_ms is not None and entry.duration_ms >= 0

    def test_fail_keeps_raw_response(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "prompt")

        ledger.fail(call_id, "bad json", response="not json")

        entry = ledger.get(call_id)
        assert entry.status == CallStatus.FAILED
        assert entry.error == "bad json"
        assert entry.response == "not json"

    def test_terminal_entries_never_regress(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "prompt")
        ledger.complete(call_id, "answer")

        with pytest.raises(InvalidTransitionError):
            ledger.mark_running(call_id)
        with pytest.raises(InvalidTransitionError):
            ledger.fail(call_id, "late error")

    def test_queued_cannot_skip_running(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "prompt", dispatch=False)

        with pytest.raises(InvalidTransitionError):
            ledger.complete(call_id, "answer")

    def test_unknown_call_id(self, ledger: CallLedger) -> None:
        with pytest.raises(UnknownCallError):
            ledger.complete("missing", "answer")

    def test_long_text_is_truncated(self) -> None:
        ledger = CallLedger(truncate_length=10)

        call_id = ledger.begin("node_edition", "x" * 50)
        ledger.fail(call_id, "e" * 2000)

        entry = ledger.get(call_id)
        assert entry.prompt == "x" * 10 + TRUNCATION_MARKER
        assert entry.error.endswith(TRUNCATION_MARKER)
        assert len(entry.error) == 1000 + len(TRUNCATION_MARKER)


class TestMonotonicity:
    """Observed statuses follow queued -> running -> completed | failed."""

    def test_observed_sequences(self, ledger: CallLedger) -> None:
        observed = _status_trace(ledger)

        ok = ledger.begin("node_edition", "a")
        bad = ledger.begin("chat_text", "b")
        ledger.complete(ok, "fine")
        ledger.fail(bad, "boom")
        ledger.attach_feedback(ok, "nice")

        assert observed[ok] == [CallStatus.QUEUED, CallStatus.RUNNING, CallStatus.COMPLETED]
        assert observed[bad] == [CallStatus.QUEUED, CallStatus.RUNNING, CallStatus.FAILED]

    def test_every_transition_notifies_with_full_list(self, ledger: CallLedger) -> None:
        deliveries: list[int] = []
        ledger.subscribe(lambda entries: deliveries.append(len(entries)))

        first = ledger.begin("node_edition", "a")
        ledger.begin("node_edition", "b")
        ledger.complete(first, "done")

        assert deliveries == [1, 1, 2, 2, 2]


class TestSubscribers:
    """Tests for subscribe/unsubscribe."""

    def test_unsubscribe_stops_delivery(self, ledger: CallLedger) -> None:
        deliveries: list[int] = []
        unsubscribe = ledger.subscribe(lambda entries: deliveries.append(len(entries)))

        ledger.begin("node_edition", "a", dispatch=False)
        unsubscribe()
        ledger.begin("node_edition", "b", dispatch=False)

        assert deliveries == [1]

    def test_raising_listener_does_not_block_others(self, ledger: CallLedger) -> None:
        deliveries: list[int] = []

        def broken(entries: list[LLMCall]) -> None:
            raise RuntimeError("render failed")

        ledger.subscribe(broken)
        ledger.subscribe(lambda entries: deliveries.append(len(entries)))

        ledger.begin("node_edition", "a", dispatch=False)

        assert deliveries == [1]


class TestFeedbackAndEvents:
    def test_feedback_only_on_terminal_entries(self, ledger: CallLedger) -> None:
        call_id = ledger.begin("node_edition", "a")

        with pytest.raises(InvalidTransitionError):
            ledger.attach_feedback(call_id, "too early")

        ledger.complete(call_id, "done")
        ledger.attach_feedback(call_id, "good edit")
        assert ledger.get(call_id).feedback == "good edit"

    def test_record_event_is_completed(self, ledger: CallLedger) -> None:
        call_id = ledger.record_event("internal_manual_edit", "before", "after")

        entry = ledger.get(call_id)
        assert entry.status == CallStatus.COMPLETED
        assert entry.response == "after"
        assert ledger.pending_count() == 0


class TestPersistence:
    def test_clear_is_the_only_destructive_operation(self, ledger: CallLedger) -> None:
        ledger.record_event("internal_x", "a", "b")

        ledger.clear()

        assert len(ledger) == 0

    def test_restored_pending_entries_are_failed(self, ledger: CallLedger) -> None:
        done = ledger.record_event("internal_x", "a", "b")
        in_flight = ledger.begin("node_edition", "c")
        snapshot = ledger.to_snapshot()

        restored = CallLedger()
        restored.load_snapshot(snapshot)

        assert restored.get(done).status == CallStatus.COMPLETED
        assert restored.get(in_flight).status == CallStatus.FAILED
        assert restored.get(in_flight).error == "interrupted by session restore"
        assert restored.pending_count() == 0
