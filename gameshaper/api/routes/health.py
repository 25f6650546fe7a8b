"""Health check API routes.

GET /health returns service status plus session counters.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from gameshaper import __version__


router = APIRouter(
    prefix="/health",
    tags=["Health"],
)


class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"


class HealthResponse(BaseModel):
    """Response model for health check.

    Attributes:
        status: healthy, or degraded when no session is bound
        service: Service name
        version: Package version
        timestamp: Check timestamp (ISO format)
        uptime_seconds: Service uptime in seconds
        entity_count: Entities in the graph
        pending_tasks: Pending calls plus queued feedback tasks
    """

    status: HealthStatus = Field(default=HealthStatus.HEALTHY)
    service: str = Field(default="gameshaper")
    version: str = Field(default=__version__)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="Check timestamp",
    )
    uptime_seconds: float | None = Field(default=None)
    entity_count: int = Field(default=0)
    pending_tasks: int = Field(default=0)


_service_start_time: datetime | None = None


def set_service_start_time(start_time: datetime | None = None) -> None:
    """Set the service start time for uptime calculation."""
    global _service_start_time
    _service_start_time = start_time or datetime.now(timezone.utc)


def get_uptime_seconds() -> float | None:
    if _service_start_time is None:
        return None
    return (datetime.now(timezone.utc) - _service_start_time).total_seconds()


@router.get("", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    session = getattr(request.app.state, "session", None)
    if session is None:
        return HealthResponse(status=HealthStatus.DEGRADED, uptime_seconds=get_uptime_seconds())
    return HealthResponse(
        service=session.settings.service_name,
        uptime_seconds=get_uptime_seconds(),
        entity_count=len(session.graph),
        pending_tasks=session.get_pending_task_count(),
    )
