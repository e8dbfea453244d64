from __future__ import annotations

from fastapi import Request

from ..cookies import read_session_cookie
from ..errors import Unauthenticated
from ..sessions import SessionStore
from ..settings import Settings
from ..spotify import SpotifyProxy, TokenExchangeClient, VibeAggregator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_oauth(request: Request) -> TokenExchangeClient:
    return request.app.state.oauth


def get_proxy(request: Request) -> SpotifyProxy:
    return request.app.state.spotify


def get_aggregator(request: Request) -> VibeAggregator:
    return request.app.state.aggregator


def current_session_id(request: Request) -> str | None:
    """Verified session id from the cookie, or ``None``; does not check the store."""
    return read_session_cookie(request, get_settings(request))


def require_session(request: Request) -> str:
    session_id = current_session_id(request)
    if not session_id or session_id not in get_store(request):
        raise Unauthenticated()
    return session_id
