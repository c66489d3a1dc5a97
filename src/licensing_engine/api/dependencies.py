"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.config import Settings, get_settings
from licensing_engine.database import async_session_factory
from licensing_engine.services import ServiceContainer, build_services


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_app_settings() -> Settings:
    return get_settings()


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]


def get_services(request: Request, db: DbSession, settings: AppSettings) -> ServiceContainer:
    """Services for this request, sharing the request's session."""
    state = request.app.state
    return build_services(
        db,
        cache=state.view_cache,
        senders=state.channel_senders,
        provider=state.gateway_provider,
        settings=settings,
    )


async def get_actor(
    x_actor: Annotated[str | None, Header()] = None,
) -> str | None:
    """Reviewer username forwarded by the auth proxy, if any."""
    return x_actor or None


async def verify_webhook_token(
    settings: AppSettings,
    x_webhook_token: Annotated[str | None, Header()] = None,
) -> None:
    """Check the gateway's shared secret when one is configured."""
    expected = settings.webhook_token
    if not expected:
        return
    if not x_webhook_token or not hmac.compare_digest(x_webhook_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook token",
        )


# Type aliases for cleaner dependency injection
Services = Annotated[ServiceContainer, Depends(get_services)]
Actor = Annotated[str | None, Depends(get_actor)]
WebhookAuth = Depends(verify_webhook_token)
