"""Signed cookies for the OAuth state and the session id.

Cookie values are HS256 JWTs signed with ``SESSION_SECRET``; the ``typ`` claim
keeps a state cookie from being replayed as a session cookie and vice versa.
"""

from __future__ import annotations

import logging
import time

import jwt
from fastapi import Request, Response

from .settings import Settings

logger = logging.getLogger(__name__)

STATE_COOKIE = "oauth_state"

_ALG = "HS256"


def sign_value(settings: Settings, kind: str, value: str, ttl: int) -> str:
    now = int(time.time())
    payload = {"typ": kind, "v": value, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, settings.SESSION_SECRET, algorithm=_ALG)


def verify_value(settings: Settings, kind: str, token: str | None) -> str | None:
    """Return the signed value, or ``None`` for a missing, forged, or expired cookie."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[_ALG])
    except jwt.ExpiredSignatureError:
        logger.info("signed cookie expired", extra={"meta": {"kind": kind}})
        return None
    except jwt.InvalidTokenError:
        logger.warning("signed cookie failed verification", extra={"meta": {"kind": kind}})
        return None
    if payload.get("typ") != kind:
        logger.warning("signed cookie has wrong type", extra={"meta": {"kind": kind}})
        return None
    value = payload.get("v")
    return value if isinstance(value, str) and value else None


def _set(response: Response, settings: Settings, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.COOKIE_SAMESITE,
    )


def _clear(response: Response, settings: Settings, name: str) -> None:
    response.delete_cookie(
        key=name,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.COOKIE_SAMESITE,
    )


def set_state_cookie(response: Response, settings: Settings, state: str) -> None:
    signed = sign_value(settings, STATE_COOKIE, state, settings.STATE_TTL_SECONDS)
    _set(response, settings, STATE_COOKIE, signed, settings.STATE_TTL_SECONDS)


def read_state_cookie(request: Request, settings: Settings) -> str | None:
    return verify_value(settings, STATE_COOKIE, request.cookies.get(STATE_COOKIE))


def clear_state_cookie(response: Response, settings: Settings) -> None:
    _clear(response, settings, STATE_COOKIE)


def set_session_cookie(response: Response, settings: Settings, session_id: str) -> None:
    signed = sign_value(settings, "session", session_id, settings.SESSION_TTL_SECONDS)
    _set(response, settings, settings.SESSION_COOKIE_NAME, signed, settings.SESSION_TTL_SECONDS)


def read_session_cookie(request: Request, settings: Settings) -> str | None:
    return verify_value(settings, "session", request.cookies.get(settings.SESSION_COOKIE_NAME))


def clear_session_cookie(response: Response, settings: Settings) -> None:
    _clear(response, settings, settings.SESSION_COOKIE_NAME)
