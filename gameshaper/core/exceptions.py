"""Custom exceptions for the gameshaper core.

All exceptions are namespaced under GameShaperError so none of them shadow
Python builtins (ConnectionError, TimeoutError, ValueError).

Patch-instruction misses and failed validation rules are NOT exceptions:
they are recorded as data (PatchDiagnostic, failed_rules).
"""

from typing import Any


class GameShaperError(Exception):
    """Base exception for all gameshaper errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class LLMTransportError(GameShaperError):
    """Raised when the completion provider cannot be reached or refuses a call.

    Retried with backoff at the dispatch boundary when ``retryable`` is set
    (rate limits, 5xx, network failures).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        """Initialize transport error.

        Args:
            message: Error description
            status_code: HTTP status code if applicable
            retryable: Whether the dispatch boundary may retry the call
        """
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class MalformedResponseError(GameShaperError):
    """Raised when an LLM response cannot be parsed into the expected shape.

    Never retried automatically. The raw response is attached for diagnostics.
    """

    def __init__(
        self,
        message: str,
        call_type: str | None = None,
        raw_response: str | None = None,
    ) -> None:
        """Initialize malformed response error.

        Args:
            message: Error description
            call_type: Call type whose output failed to parse
            raw_response: The unparsed model output
        """
        self.call_type = call_type
        self.raw_response = raw_response
        super().__init__(message)


class PatchValidationError(GameShaperError):
    """Raised when a patch payload is rejected at the parse boundary."""

    def __init__(
        self,
        message: str,
        entity_id: str | None = None,
        field: str | None = None,
        value: Any | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.field = field
        self.value = value
        super().__init__(message)


class UnknownCallError(GameShaperError):
    """Raised when a ledger operation references a call id that does not exist."""

    def __init__(self, call_id: str) -> None:
        self.call_id = call_id
        super().__init__(f"Unknown LLM call id: {call_id}")


class InvalidTransitionError(GameShaperError):
    """Raised when a ledger transition would regress or skip a status."""

    def __init__(self, call_id: str, current: str, requested: str) -> None:
        self.call_id = call_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Call {call_id} cannot move from '{current}' to '{requested}'"
        )


class PipelineStageError(GameShaperError):
    """Raised inside the generation pipeline when a stage cannot produce output.

    Caught at the pipeline boundary and converted into an error record.
    """

    def __init__(self, message: str, stage: str, cause: Exception | None = None) -> None:
        self.stage = stage
        self.cause = cause
        if cause:
            self.__cause__ = cause
        super().__init__(message)


class PipelineBusyError(GameShaperError):
    """Raised when a second pipeline run is attempted while one is in flight."""

    def __init__(self, message: str = "A generation pipeline is already running") -> None:
        super().__init__(message)


class ClientError(GameShaperError):
    """Base class for non-LLM capability client failures."""

    def __init__(
        self,
        message: str,
        service_name: str,
        status_code: int | None = None,
    ) -> None:
        """Initialize client error.

        Args:
            message: Error description
            service_name: Name of the external service
            status_code: HTTP status code if applicable
        """
        self.service_name = service_name
        self.status_code = status_code
        super().__init__(message)


class SearchClientError(ClientError):
    """Raised when the web search capability fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, "web-search", status_code)


class ImageClientError(ClientError):
    """Raised when the image generation capability fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, "image-generation", status_code)


class SnapshotError(GameShaperError):
    """Raised when the session snapshot cannot be written or read."""
