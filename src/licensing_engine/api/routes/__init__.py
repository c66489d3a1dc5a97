"""API routes."""

from licensing_engine.api.routes.alerts import router as alerts_router
from licensing_engine.api.routes.health import router as health_router
from licensing_engine.api.routes.licenses import router as licenses_router
from licensing_engine.api.routes.payments import router as payments_router
from licensing_engine.api.routes.webhooks import router as webhooks_router
from licensing_engine.api.routes.workflow import router as workflow_router

__all__ = [
    "alerts_router",
    "health_router",
    "licenses_router",
    "payments_router",
    "webhooks_router",
    "workflow_router",
]
