from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from ..errors import UpstreamAuthError
from ..retry import RetryableStatus, Sleep, is_transient_status, retry_async
from ..settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class TokenGrant:
    """Result of a token endpoint call.

    ``refresh_token`` is ``None`` after a refresh where Spotify kept the old one.
    """

    access_token: str
    expires_in: int | None
    refresh_token: str | None = None
    scope: str | None = None

    def expires_at(self, now: float) -> float | None:
        if self.expires_in is None:
            return None
        return now + self.expires_in


def build_authorize_url(settings: Settings, state: str) -> str:
    """Spotify authorization URL for the code flow."""
    params = {
        "response_type": "code",
        "client_id": settings.SPOTIFY_CLIENT_ID,
        "scope": " ".join(settings.scopes),
        "redirect_uri": settings.SPOTIFY_REDIRECT_URI,
        "state": state,
    }
    # Force the consent dialog only while developing
    if not settings.is_production:
        params["show_dialog"] = "true"
    return f"{settings.authorize_url}?{urlencode(params)}"


class TokenExchangeClient:
    """Authorization-code exchange and refresh against the Spotify token endpoint.

    Transient failures (network, timeout, 5xx) are retried with exponential
    backoff. A 4xx is a semantic rejection: an authorization code is single
    use, so retrying an ``invalid_grant`` can only burn attempts.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings, *, sleep: Sleep = asyncio.sleep):
        self._http = http
        self._settings = settings
        self._sleep = sleep

    async def exchange_authorization_code(self, code: str, redirect_uri: str | None = None) -> TokenGrant:
        if not code:
            raise UpstreamAuthError("Missing authorization code", status_code=400)
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self._settings.SPOTIFY_REDIRECT_URI,
        }
        payload = await self._post_token(data, operation="exchange_code")
        refresh_token = payload.get("refresh_token")
        if not refresh_token:
            raise UpstreamAuthError("Token response missing refresh_token", status_code=200)
        return self._grant(payload, refresh_token=refresh_token)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        if not refresh_token:
            raise UpstreamAuthError("No refresh token available", status_code=400)
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        payload = await self._post_token(data, operation="refresh")
        # Spotify may or may not rotate the refresh token
        return self._grant(payload, refresh_token=payload.get("refresh_token") or None)

    @staticmethod
    def _grant(payload: dict[str, Any], *, refresh_token: str | None) -> TokenGrant:
        expires_in = payload.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_in = None
        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=expires_in,
            refresh_token=refresh_token,
            scope=payload.get("scope"),
        )

    async def _post_token(self, data: dict[str, str], *, operation: str) -> dict[str, Any]:
        url = self._settings.token_url
        auth = httpx.BasicAuth(self._settings.SPOTIFY_CLIENT_ID, self._settings.SPOTIFY_CLIENT_SECRET)

        async def attempt() -> httpx.Response:
            r = await self._http.post(
                url,
                data=data,
                auth=auth,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            if is_transient_status(r.status_code):
                raise RetryableStatus(r)
            return r

        try:
            r = await retry_async(
                attempt,
                attempts=self._settings.RETRY_ATTEMPTS,
                base_delay=self._settings.RETRY_BASE_DELAY,
                sleep=self._sleep,
                label=f"spotify token {operation}",
            )
        except RetryableStatus as e:
            r = e.response
        except httpx.RequestError as e:
            logger.warning(
                "spotify token endpoint unreachable",
                extra={"meta": {"operation": operation, "error_type": type(e).__name__}},
            )
            raise UpstreamAuthError(f"Token {operation} failed: {type(e).__name__}") from e

        if r.status_code < 200 or r.status_code >= 300:
            logger.warning(
                "spotify token endpoint rejected request",
                extra={"meta": {"operation": operation, "status_code": r.status_code, "body": r.text[:500]}},
            )
            raise UpstreamAuthError(
                f"Token {operation} failed: {r.status_code}",
                status_code=r.status_code,
                body=r.text,
            )

        try:
            payload = r.json()
        except ValueError as e:
            raise UpstreamAuthError(
                f"Token {operation} returned invalid JSON", status_code=r.status_code, body=r.text
            ) from e
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise UpstreamAuthError(
                f"Token {operation} response missing access_token", status_code=r.status_code, body=r.text
            )

        logger.info(
            "spotify token %s ok",
            operation,
            extra={
                "meta": {
                    "expires_in": payload.get("expires_in"),
                    "rotated_refresh_token": bool(payload.get("refresh_token")),
                }
            },
        )
        return payload
