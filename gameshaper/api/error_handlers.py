"""Error handlers for API routes.

Every error leaves the API as an ErrorResponse body. GameShaperError
subclasses map to a status code and a machine-readable code; the most
specific registered class wins.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from gameshaper.core.exceptions import (
    ClientError,
    GameShaperError,
    InvalidTransitionError,
    LLMTransportError,
    MalformedResponseError,
    PatchValidationError,
    PipelineBusyError,
    PipelineStageError,
    SnapshotError,
    UnknownCallError,
)


logger = logging.getLogger(__name__)


ExceptionHandler = Callable[[Request, Exception], Awaitable[JSONResponse]]


# =============================================================================
# Error Response Model
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response model.

    Attributes:
        error: Error type/category
        detail: Human-readable error description
        code: Optional machine-readable error code
        path: Optional request path that caused the error
    """

    error: str = Field(
        ...,
        description="Error type or category",
    )
    detail: str = Field(
        ...,
        description="Human-readable error description",
    )
    code: str | None = Field(
        default=None,
        description="Machine-readable error code",
    )
    path: str | None = Field(
        default=None,
        description="Request path that caused the error",
    )


# (status, error, code) per exception class; looked up along the MRO
ERROR_MAPPING: dict[type[GameShaperError], tuple[int, str, str]] = {
    LLMTransportError: (502, "UpstreamError", "LLM_TRANSPORT_ERROR"),
    MalformedResponseError: (502, "MalformedResponse", "MALFORMED_RESPONSE"),
    ClientError: (502, "UpstreamError", "CLIENT_ERROR"),
    PatchValidationError: (422, "PatchValidationError", "PATCH_VALIDATION_ERROR"),
    UnknownCallError: (404, "NotFound", "UNKNOWN_CALL"),
    InvalidTransitionError: (409, "Conflict", "INVALID_TRANSITION"),
    PipelineBusyError: (409, "Conflict", "PIPELINE_BUSY"),
    PipelineStageError: (500, "PipelineStageError", "PIPELINE_STAGE_ERROR"),
    SnapshotError: (500, "SnapshotError", "SNAPSHOT_ERROR"),
    GameShaperError: (500, "GameShaperError", "GAMESHAPER_ERROR"),
}


def resolve_error(exc: GameShaperError) -> tuple[int, str, str]:
    """Status, error and code for a domain exception."""
    for cls in type(exc).__mro__:
        if cls in ERROR_MAPPING:
            return ERROR_MAPPING[cls]
    return ERROR_MAPPING[GameShaperError]


# =============================================================================
# Exception Handlers
# =============================================================================

async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle HTTPException (and router 404/405) with ErrorResponse schema."""
    error_type = {
        400: "BadRequest",
        404: "NotFound",
        409: "Conflict",
        422: "ValidationError",
        500: "InternalServerError",
        503: "ServiceUnavailable",
    }.get(exc.status_code, "Error")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=error_type,
            detail=str(exc.detail),
            path=str(request.url.path),
        ).model_dump(),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle request body validation errors.

    Args:
        request: FastAPI request object
        exc: RequestValidationError raised

    Returns:
        JSONResponse with ErrorResponse format and field details
    """
    field_errors = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error.get("loc", []))
        msg = error.get("msg", "Invalid value")
        field_errors.append(f"{loc}: {msg}")

    detail = "; ".join(field_errors) if field_errors else "Validation error"

    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error="ValidationError",
            detail=detail,
            code="VALIDATION_ERROR",
            path=str(request.url.path),
        ).model_dump(),
    )


async def gameshaper_error_handler(
    request: Request,
    exc: GameShaperError,
) -> JSONResponse:
    """Handle every GameShaperError subclass through ERROR_MAPPING."""
    status_code, error_type, code = resolve_error(exc)
    if status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": str(request.url.path), "error_type": type(exc).__name__, "error": exc.message},
        )
    else:
        logger.info("Request rejected (%s): %s", code, exc.message)

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error_type,
            detail=exc.message,
            code=code,
            path=str(request.url.path),
        ).model_dump(),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={
            "path": str(request.url.path),
            "error_type": type(exc).__name__,
        },
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="InternalServerError",
            detail="An unexpected error occurred",
            code="INTERNAL_ERROR",
            path=str(request.url.path),
        ).model_dump(),
    )


# =============================================================================
# Registration Function
# =============================================================================

def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(
        StarletteHTTPException,
        http_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        GameShaperError,
        gameshaper_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        Exception,
        generic_exception_handler,
    )


__all__ = [
    "ERROR_MAPPING",
    "ErrorResponse",
    "register_error_handlers",
    "resolve_error",
]
