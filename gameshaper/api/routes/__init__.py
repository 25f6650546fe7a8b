"""API routers, registered in gameshaper.main."""

from gameshaper.api.routes.chat import router as chat_router
from gameshaper.api.routes.edits import router as edits_router
from gameshaper.api.routes.entities import router as entities_router
from gameshaper.api.routes.feedback import router as feedback_router
from gameshaper.api.routes.health import router as health_router
from gameshaper.api.routes.ledger import router as ledger_router
from gameshaper.api.routes.pipelines import router as pipelines_router


__all__ = [
    "chat_router",
    "edits_router",
    "entities_router",
    "feedback_router",
    "health_router",
    "ledger_router",
    "pipelines_router",
]
