"""
FastAPI dependencies for authentication, database, and presence.
"""

from typing import Annotated

from fastapi import Cookie, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.requests import HTTPConnection

from gitchat.db import get_db
from gitchat.errors import Unauthorized
from gitchat.models.user import User
from gitchat.models.user_session import UserSession
from gitchat.services.presence import PresenceRegistry
from gitchat.services.storage import StorageError, StorageService, get_storage_service

# Type alias for database dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]


async def get_session_user(db: AsyncSession, session_token: str | None) -> tuple[User | None, UserSession | None]:
    """Resolve a session cookie to its user, or (None, None) if missing/expired."""
    if not session_token:
        return None, None

    result = await db.execute(
        select(UserSession)
        .where(UserSession.session_token == session_token)
        .options(selectinload(UserSession.user))
    )
    session = result.scalar_one_or_none()
    if not session or not session.user or not session.is_valid():
        return None, None
    return session.user, session


async def get_current_user_optional(
    request: Request,
    db: DBSession,
    session_token: str | None = Cookie(default=None),
) -> User | None:
    """Get current user from session cookie (returns None if not authenticated).

    Sessions slide: once less than half the lifetime remains, a request
    extends the expiry and the middleware in main.py re-sets the cookie.
    """
    user, session = await get_session_user(db, session_token)
    if user is None:
        return None

    if session.refresh():
        request.state.session_refreshed = True
    user.update_last_seen()
    request.state.user = user
    return user


async def get_current_user(
    user: Annotated[User | None, Depends(get_current_user_optional)],
) -> User:
    """Get current user from session cookie (raises 401 if not authenticated).

    The 401 handler in main.py answers API-style requests with JSON and
    redirects browser navigations to the login page.
    """
    if not user:
        raise Unauthorized()
    return user


# Type alias for authenticated user dependency
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentUserOptional = Annotated[User | None, Depends(get_current_user_optional)]


def get_presence(connection: HTTPConnection) -> PresenceRegistry:
    """The application's presence registry (works for HTTP and WebSocket routes)."""
    return connection.app.state.presence


def get_storage() -> StorageService | None:
    """Blob store, or None when uploads are not configured."""
    try:
        return get_storage_service()
    except StorageError:
        return None


Presence = Annotated[PresenceRegistry, Depends(get_presence)]
Storage = Annotated[StorageService | None, Depends(get_storage)]
