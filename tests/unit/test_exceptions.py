"""Unit tests for custom exceptions.

Pattern: Custom exception hierarchy
"""

import pytest

from gameshaper.core.exceptions import (
    ClientError,
    GameShaperError,
    ImageClientError,
    InvalidTransitionError,
    LLMTransportError,
    MalformedResponseError,
    PatchValidationError,
    PipelineBusyError,
    PipelineStageError,
    SearchClientError,
    SnapshotError,
    UnknownCallError,
)


class TestHierarchy:
    """Every error is catchable as GameShaperError."""

    @pytest.mark.parametrize("error", [
        LLMTransportError("x"),
        MalformedResponseError("x"),
        PatchValidationError("x"),
        UnknownCallError("c1"),
        InvalidTransitionError("c1", "completed", "running"),
        PipelineStageError("x", stage="planning"),
        PipelineBusyError(),
        SearchClientError("x"),
        ImageClientError("x"),
        SnapshotError("x"),
    ])
    def test_is_gameshaper_error(self, error: GameShaperError) -> None:
        with pytest.raises(GameShaperError):
            raise error

    def test_builtins_are_not_shadowed(self) -> None:
        assert not issubclass(LLMTransportError, ConnectionError)
        assert not issubclass(PatchValidationError, ValueError)

    def test_client_errors_share_a_base(self) -> None:
        assert issubclass(SearchClientError, ClientError)
        assert issubclass(ImageClientError, ClientError)
        assert SearchClientError("x").service_name == "web-search"
        assert ImageClientError("x", status_code=400).status_code == 400


class TestAttributes:
    def test_transport_error_defaults_to_not_retryable(self) -> None:
        error = LLMTransportError("boom", status_code=401)

        assert error.retryable is False
        assert error.status_code == 401
        assert str(error) == "boom"

    def test_malformed_response_keeps_raw_text(self) -> None:
        error = MalformedResponseError("bad", call_type="node_edition", raw_response="oops")

        assert error.call_type == "node_edition"
        assert error.raw_response == "oops"

    def test_invalid_transition_message(self) -> None:
        error = InvalidTransitionError("c1", "completed", "running")

        assert error.message == "Call c1 cannot move from 'completed' to 'running'"

    def test_stage_error_chains_cause(self) -> None:
        cause = MalformedResponseError("bad")
        error = PipelineStageError("planning failed", stage="planning", cause=cause)

        assert error.__cause__ is cause
        assert error.stage == "planning"
