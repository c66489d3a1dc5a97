"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from licensing_engine.api.routes import (
    alerts_router,
    health_router,
    licenses_router,
    payments_router,
    webhooks_router,
    workflow_router,
)
from licensing_engine.channels import AlertChannelSender, default_channel_senders
from licensing_engine.config import get_settings
from licensing_engine.database import dispose_db, init_db
from licensing_engine.errors import (
    ConcurrencyConflictError,
    LicensingError,
    NotFoundError,
    NoValidChannelsError,
    ValidationError,
)
from licensing_engine.gateway import PaymentGatewayProvider, StubGatewayProvider
from licensing_engine.services import InMemoryViewCache

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS: list[tuple[type[LicensingError], int]] = [
    (NoValidChannelsError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
]


def status_for_error(exc: LicensingError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    if app.state.create_tables:
        await init_db()
    yield
    # Shutdown
    await dispose_db()


def create_app(
    *,
    gateway_provider: PaymentGatewayProvider | None = None,
    channel_senders: dict[str, AlertChannelSender] | None = None,
    create_tables: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="Licensing Engine API",
        description="Licensing workflow and payment reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.create_tables = create_tables
    app.state.view_cache = InMemoryViewCache(default_ttl=settings.group_counts_cache_ttl)
    app.state.channel_senders = (
        channel_senders if channel_senders is not None else default_channel_senders()
    )
    app.state.gateway_provider = gateway_provider or StubGatewayProvider()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(LicensingError)
    async def licensing_error_handler(
        request: Request, exc: LicensingError
    ) -> JSONResponse:
        """Map the domain error taxonomy onto HTTP status codes."""
        code = status_for_error(exc)
        if code >= 500:
            logger.error("Unhandled %s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(workflow_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")
    app.include_router(licenses_router, prefix="/api/v1")
    app.include_router(alerts_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
