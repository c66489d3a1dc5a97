"""Probe and metrics endpoints, mounted at the root."""

from datetime import datetime, timezone

from fastapi import APIRouter, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from licensing_engine.api.dependencies import DbSession
from licensing_engine.database import check_connection
from licensing_engine.metrics import metrics

router = APIRouter(tags=["health"])

SERVICE_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str  # healthy or degraded
    timestamp: datetime
    database: str
    version: str = SERVICE_VERSION


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession) -> HealthResponse:
    """Liveness plus a database round trip.

    A failed database check degrades the report but still answers 200 so
    the probe can tell "API up, database down" apart from "API down".
    """
    connected, _ = await check_connection(db)
    return HealthResponse(
        status="healthy" if connected else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if connected else "unhealthy",
    )


@router.get("/ready")
async def readiness_check(db: DbSession, response: Response) -> dict[str, str]:
    """Ready only when the database answers."""
    connected, message = await check_connection(db)
    if not connected:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "detail": message}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics_export() -> str:
    """In-process counters in Prometheus text format."""
    return metrics.to_prometheus()
