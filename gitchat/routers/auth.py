"""
Authentication router: GitHub OAuth login, session check and logout.
"""

import logging
import secrets
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import delete

from gitchat.deps import CurrentUserOptional, DBSession
from gitchat.models.user_session import UserSession
from gitchat.services.auth_providers import get_oauth_provider
from gitchat.services.users import upsert_github_user
from gitchat.settings import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _client_redirect(path: str = "/") -> str:
    return f"{settings.client_base_url.rstrip('/')}{path}"


def set_session_cookie(response, session_token: str) -> None:
    response.set_cookie(
        key="session_token",
        value=session_token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.session_expire_hours * 3600,
    )


@router.get("/github/login")
async def github_login():
    """Start the GitHub OAuth flow."""
    provider = get_oauth_provider()
    if not provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="GitHub login is not configured",
        )

    state = secrets.token_urlsafe(32)
    params = provider.get_authorization_params(state)
    auth_url = f"{provider.authorization_url}?{urlencode(params)}"

    response = RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        key="oauth_state",
        value=state,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=600,  # 10 minutes
    )
    return response


@router.get("/github/callback")
async def github_callback(
    request: Request,
    db: DBSession,
    code: str = Query(...),
    state: str = Query(...),
):
    """Handle the GitHub OAuth callback."""
    provider = get_oauth_provider()
    if not provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="GitHub login is not configured",
        )

    stored_state = request.cookies.get("oauth_state")
    if not stored_state or stored_state != state:
        return RedirectResponse(
            url=_client_redirect("/login?error=Invalid+OAuth+state"),
            status_code=status.HTTP_302_FOUND,
        )

    try:
        tokens = await provider.exchange_code(code)
        user_info = await provider.get_user_info(tokens["access_token"])
    except httpx.HTTPError as e:
        logger.warning("GitHub OAuth failed: %s", e)
        return RedirectResponse(
            url=_client_redirect("/login?error=OAuth+failed"),
            status_code=status.HTTP_302_FOUND,
        )

    user = await upsert_github_user(db, user_info)
    session = UserSession.create_session(user.id, request)
    db.add(session)
    user.update_last_seen()
    await db.commit()
    logger.info("%s signed in with GitHub", user.username)

    response = RedirectResponse(url=_client_redirect("/"), status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, session.session_token)
    response.delete_cookie("oauth_state")
    return response


@router.get("/check")
async def check_auth(user: CurrentUserOptional):
    """Report the signed-in user, if any."""
    if not user:
        return {"user": None}
    return {"user": user.public_profile()}


@router.post("/logout")
async def logout(request: Request, db: DBSession):
    """End the current session."""
    session_token = request.cookies.get("session_token")
    if session_token:
        await db.execute(delete(UserSession).where(UserSession.session_token == session_token))
        await db.commit()

    response = JSONResponse({"success": True})
    response.delete_cookie("session_token")
    return response
