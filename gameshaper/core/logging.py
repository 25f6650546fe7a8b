"""Structured logging configuration.

structlog renders every entry, including the records of the standard
library loggers used by the library modules, through one processor chain:

- JSON lines in production and staging, colored console lines elsewhere
- service and environment on every entry
- ``call_id`` and ``call_type`` on every entry logged while a dispatched
  call is in flight (see bind_call_context)
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from gameshaper.core.config import get_settings


# Third-party loggers kept at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_service_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service and environment, keeping values already bound."""
    settings = get_settings()
    event_dict.setdefault("service", settings.service_name)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


@contextmanager
def bind_call_context(call_id: str, call_type: str, **extra: Any) -> Iterator[None]:
    """Attach a call's identity to every entry logged inside the block.

    Bindings live in context variables, so they follow the awaiting task and
    are restored on exit, also when the block raises.

    Example:
        ```python
        with bind_call_context(call_id, "node_edition"):
            logger.warning("Retrying call")  # carries call_id and call_type
        ```
    """
    with structlog.contextvars.bound_contextvars(call_id=call_id, call_type=call_type, **extra):
        yield


def _renderer(use_json: bool) -> Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging() -> None:
    """Configure structured logging for the application.

    Replaces the root handlers with one stdout handler whose formatter runs
    the structlog chain, so standard library records and structlog entries
    come out in the same format.
    """
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    use_json = settings.environment in ("production", "staging")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context,
        structlog.processors.StackInfoRenderer(),
    ]
    if use_json:
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(use_json),
        ],
    ))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Example:
        ```python
        from gameshaper.core.logging import get_logger

        logger = get_logger(__name__)
        logger.info("Patch applied", created=2, updated=1)
        ```
    """
    return structlog.get_logger(name)
