from __future__ import annotations

import hmac
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse, Response

from .. import cookies
from ..errors import CsrfMismatch, UpstreamAuthError
from ..http_errors import error_response
from ..sessions import SessionRecord, SessionStore
from ..settings import Settings
from ..spotify import TokenExchangeClient
from ..spotify.oauth import build_authorize_url
from ..util.ids import random_token
from .deps import current_session_id, get_oauth, get_settings, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

STATE_BYTES = 16


def _frontend_redirect(settings: Settings, path: str = "/", error: str | None = None) -> RedirectResponse:
    url = f"{settings.FRONTEND_URI}{path}"
    if error:
        url = f"{url}?error={quote(error, safe='')}"
    return RedirectResponse(url, status_code=302)


@router.get("/auth/login", name="spotify_login")
@router.get("/auth/spotify", include_in_schema=False)
async def login(settings: Settings = Depends(get_settings)) -> Response:
    """Start the authorization-code flow with a fresh, cookie-bound state."""
    state = random_token(STATE_BYTES)
    response = RedirectResponse(build_authorize_url(settings, state), status_code=302)
    cookies.set_state_cookie(response, settings, state)
    logger.info("oauth login redirect issued")
    return response


@router.get("/auth/callback", name="spotify_callback")
@router.get("/auth/spotify/callback", include_in_schema=False)
async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
    oauth: TokenExchangeClient = Depends(get_oauth),
) -> Response:
    if error:
        logger.info("oauth denied upstream", extra={"meta": {"error": error}})
        response = _frontend_redirect(settings, "/", error=error)
        cookies.clear_state_cookie(response, settings)
        return response

    expected = cookies.read_state_cookie(request, settings)
    if not state or not expected or not hmac.compare_digest(state.encode(), expected.encode()):
        logger.warning(
            "oauth state mismatch",
            extra={"meta": {"has_state": bool(state), "has_cookie": bool(expected)}},
        )
        exc = CsrfMismatch()
        response = error_response(exc.code, exc.message, status=exc.status_code)
        cookies.clear_state_cookie(response, settings)
        return response

    if not code:
        response = error_response("missing_code", "Missing authorization code", status=400)
        cookies.clear_state_cookie(response, settings)
        return response

    try:
        grant = await oauth.exchange_authorization_code(code, settings.SPOTIFY_REDIRECT_URI)
    except UpstreamAuthError as e:
        logger.warning(
            "token exchange failed",
            extra={"meta": {"upstream_status": e.upstream_status}},
        )
        response = _frontend_redirect(settings, "/", error="token_exchange_failed")
        cookies.clear_state_cookie(response, settings)
        return response

    # Re-login replaces whatever session this browser had before
    previous = current_session_id(request)
    if previous:
        await store.delete(previous)

    now = store.now()
    session_id = store.create(
        SessionRecord(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or "",
            expires_at=grant.expires_at(now),
            created_at=now,
        )
    )

    response = _frontend_redirect(settings, "/dashboard")
    cookies.set_session_cookie(response, settings, session_id)
    cookies.clear_state_cookie(response, settings)
    return response


@router.get("/auth/status")
async def status(
    request: Request,
    store: SessionStore = Depends(get_store),
) -> dict:
    record = store.get(current_session_id(request))
    if record is None:
        return {"authenticated": False, "expiresAt": None}
    return {"authenticated": True, "expiresAt": record.expires_at}


@router.get("/logout", include_in_schema=False)
async def logout_redirect(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
) -> Response:
    await store.delete(current_session_id(request))
    response = _frontend_redirect(settings, "/")
    cookies.clear_session_cookie(response, settings)
    return response
