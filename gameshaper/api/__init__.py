"""HTTP API for the authoring session."""

from gameshaper.api.dependencies import get_session
from gameshaper.api.error_handlers import ErrorResponse, register_error_handlers


__all__ = [
    "ErrorResponse",
    "get_session",
    "register_error_handlers",
]
