"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the realtime hub, the authenticated actor and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI

from escrow_mediation.config import Settings, get_settings
from escrow_mediation.domain.actors import Actor
from escrow_mediation.domain.enums import UserRole
from escrow_mediation.domain.exceptions import UnauthorizedError
from escrow_mediation.infrastructure.database.engine import get_async_session
from escrow_mediation.infrastructure.database.repositories import UserRepository

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from escrow_mediation.realtime.hub import RealtimeHub

_bearer = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_hub(request: Request) -> RealtimeHub | None:
    """Provide the process-wide realtime hub created at startup."""
    return getattr(request.app.state, "hub", None)


async def authenticate_token(session: AsyncSession, token: str | None) -> Actor:
    """Resolve an API token to the caller. Shared by REST and the socket adapter."""
    if not token:
        raise UnauthorizedError()
    user = await UserRepository(session).get_by_token(token)
    if user is None:
        raise UnauthorizedError("Invalid API token")
    if user.blocked:
        raise UnauthorizedError("Account is blocked")
    return Actor(user_id=user.id, role=UserRole(user.role), full_name=user.full_name)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    session: AsyncSession = Depends(get_db_session),
) -> Actor:
    """Provide the authenticated caller from the `Authorization: Bearer` header."""
    return await authenticate_token(session, credentials.credentials if credentials else None)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
