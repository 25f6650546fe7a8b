"""Core module - configuration, logging, prompt templates and exceptions.

Exports:
    - Settings, get_settings: Pydantic Settings configuration
    - configure_logging, get_logger, bind_call_context: Structured logging (structlog)
    - load_prompts, format_prompt, get_task_options: YAML prompt templates
    - Exception classes: GameShaperError and subclasses
"""

from gameshaper.core.config import Settings, get_settings
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
from gameshaper.core.logging import bind_call_context, configure_logging, get_logger
from gameshaper.core.prompts import format_prompt, get_task_options, load_prompts


__all__ = [
    # Exceptions
    "ClientError",
    "GameShaperError",
    "ImageClientError",
    "InvalidTransitionError",
    "LLMTransportError",
    "MalformedResponseError",
    "PatchValidationError",
    "PipelineBusyError",
    "PipelineStageError",
    "SearchClientError",
    # Configuration
    "Settings",
    "SnapshotError",
    "UnknownCallError",
    # Logging
    "bind_call_context",
    "configure_logging",
    "format_prompt",
    "get_logger",
    "get_settings",
    "get_task_options",
    "load_prompts",
]
