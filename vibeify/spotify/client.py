from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from ..errors import (
    SessionExpired,
    Unauthenticated,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamTransientError,
    VibeifyError,
)
from ..retry import RetryableStatus, Sleep, is_transient_status, retry_async
from ..sessions import SessionRecord, SessionStore
from ..settings import Settings
from ..util.aio import gather_settled
from .config import AUDIO_FEATURES_BATCH, DEFAULT_TIME_RANGE, clamp_limit
from .oauth import TokenExchangeClient

logger = logging.getLogger(__name__)


@dataclass
class AudioFeaturesResult:
    """Features keyed by track id, plus the errors of any failed batches."""

    features: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: list[VibeifyError] = field(default_factory=list)
    batches: int = 0

    def ordered(self, ids: list[str]) -> list[dict[str, Any] | None]:
        return [self.features.get(i) for i in ids]


def _error_message(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text[:200] or f"Spotify returned {r.status_code}"
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    if isinstance(err, str):
        return body.get("error_description") or err
    return f"Spotify returned {r.status_code}"


def _retry_after(r: httpx.Response) -> int | None:
    raw = r.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0, int(raw))
    except ValueError:
        return None


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class SpotifyProxy:
    """Authenticated calls to the Spotify Web API on behalf of a session.

    Every call resolves the session, refreshes an expired access token under
    the session lock, attaches the bearer credential, retries transient
    failures, and turns any non-success into a ``VibeifyError``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: SessionStore,
        oauth: TokenExchangeClient,
        settings: Settings,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http
        self._store = store
        self._oauth = oauth
        self._settings = settings
        self._sleep = sleep
        self.api_base = settings.SPOTIFY_API_URL.rstrip("/")

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    async def ensure_fresh(self, session_id: str | None) -> SessionRecord:
        record, _ = await self._ensure_fresh(session_id)
        return record

    async def _ensure_fresh(self, session_id: str | None) -> tuple[SessionRecord, bool]:
        """Return a usable record and whether this call refreshed it."""
        record = self._store.get(session_id)
        if record is None:
            raise Unauthenticated()
        if not record.is_expired(self._store.now()):
            return record, False

        async with self._store.transaction(session_id) as txn:
            if txn.record is None:
                # Another request's refresh failed and removed it while we waited
                raise SessionExpired()
            if not txn.record.is_expired(self._store.now()):
                return txn.record, False
            return await self._refresh(txn), True

    async def force_refresh(self, session_id: str | None) -> SessionRecord:
        if self._store.get(session_id) is None:
            raise Unauthenticated()
        async with self._store.transaction(session_id) as txn:
            if txn.record is None:
                raise Unauthenticated()
            return await self._refresh(txn)

    async def _refresh_rejected(self, session_id: str, rejected_token: str) -> SessionRecord:
        """Handle a 401 on a token this request did not just mint.

        The record is marked expired under the lock and refreshed once. If a
        concurrent request already replaced the rejected token, its record is
        used as is.
        """
        async with self._store.transaction(session_id) as txn:
            if txn.record is None:
                raise SessionExpired()
            if txn.record.access_token != rejected_token:
                return txn.record
            txn.save(replace(txn.record, expires_at=self._store.now()))
            logger.info("access token rejected, refreshing")
            return await self._refresh(txn)

    async def _refresh(self, txn) -> SessionRecord:
        current: SessionRecord = txn.record
        try:
            grant = await self._oauth.refresh_access_token(current.refresh_token)
        except UpstreamAuthError as e:
            txn.delete()
            logger.warning(
                "session refresh failed, session deleted",
                extra={"meta": {"upstream_status": e.upstream_status}},
            )
            raise SessionExpired() from e

        updated = replace(
            current,
            access_token=grant.access_token,
            expires_at=grant.expires_at(self._store.now()),
            refresh_token=grant.refresh_token or current.refresh_token,
        )
        txn.save(updated)
        logger.info(
            "session refreshed",
            extra={"meta": {"expires_at": updated.expires_at, "rotated": bool(grant.refresh_token)}},
        )
        return updated

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def call(
        self,
        session_id: str | None,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        record, refreshed = await self._ensure_fresh(session_id)
        url = path if path.startswith("http") else f"{self.api_base}/{path.lstrip('/')}"
        query = {k: v for k, v in (params or {}).items() if v is not None}

        r = await self._send(method, url, query, record.access_token, path)
        if r.status_code == 401 and not refreshed:
            # Stale or revoked token: refresh once and replay once
            record = await self._refresh_rejected(session_id, record.access_token)
            r = await self._send(method, url, query, record.access_token, path)
        return self._handle_response(r, path)

    async def _send(
        self, method: str, url: str, query: dict[str, Any], access_token: str, path: str
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"}

        async def attempt() -> httpx.Response:
            r = await self._http.request(method, url, params=query, headers=headers)
            if is_transient_status(r.status_code):
                raise RetryableStatus(r)
            return r

        try:
            return await retry_async(
                attempt,
                attempts=self._settings.RETRY_ATTEMPTS,
                base_delay=self._settings.RETRY_BASE_DELAY,
                sleep=self._sleep,
                label=f"spotify {method} {path}",
            )
        except RetryableStatus as e:
            logger.warning(
                "spotify server error after retries",
                extra={"meta": {"path": path, "status_code": e.response.status_code, "body": e.response.text[:500]}},
            )
            raise UpstreamTransientError(
                _error_message(e.response), status_code=e.response.status_code, body=e.response.text
            ) from None
        except httpx.TimeoutException as e:
            logger.warning("spotify request timed out", extra={"meta": {"path": path}})
            raise UpstreamTransientError("Spotify request timed out") from e
        except httpx.RequestError as e:
            logger.warning(
                "spotify request error",
                extra={"meta": {"path": path, "error_type": type(e).__name__}},
            )
            raise UpstreamTransientError(f"Network error contacting Spotify: {type(e).__name__}") from e

    def _handle_response(self, r: httpx.Response, path: str) -> Any:
        status = r.status_code
        if 200 <= status < 300:
            if status == 204 or not r.content:
                return {}
            try:
                return r.json()
            except ValueError:
                raise UpstreamError("Spotify returned invalid JSON", status_code=502, body=r.text) from None

        message = _error_message(r)
        logger.warning(
            "spotify request failed",
            extra={"meta": {"path": path, "status_code": status, "body": r.text[:500]}},
        )
        if status == 401:
            # Right after a refresh a 401 is not transient; surface it instead of looping
            raise UpstreamAuthError(message, status_code=401, body=r.text)
        if status == 429:
            raise UpstreamRateLimited(message, retry_after=_retry_after(r), body=r.text)
        if 400 <= status < 600:
            raise UpstreamError(message, status_code=status, body=r.text)
        raise UpstreamError(f"Unexpected Spotify status {status}", status_code=502, body=r.text)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_profile(self, session_id: str) -> dict[str, Any]:
        return await self.call(session_id, "GET", "/me")

    async def get_top(
        self,
        session_id: str,
        kind: str,
        *,
        time_range: str = DEFAULT_TIME_RANGE,
        limit: int | None = 20,
    ) -> dict[str, Any]:
        return await self.call(
            session_id,
            "GET",
            f"/me/top/{kind}",
            {"time_range": time_range, "limit": clamp_limit(limit)},
        )

    async def get_recently_played(self, session_id: str, *, limit: int | None = 20) -> dict[str, Any]:
        return await self.call(
            session_id, "GET", "/me/player/recently-played", {"limit": clamp_limit(limit)}
        )

    async def get_now_playing(self, session_id: str) -> dict[str, Any]:
        """Currently playing item, or ``{}`` when nothing is playing (204)."""
        return await self.call(session_id, "GET", "/me/player/currently-playing")

    async def get_playlists(
        self, session_id: str, *, limit: int | None = 20, offset: int = 0
    ) -> dict[str, Any]:
        return await self.call(
            session_id,
            "GET",
            "/me/playlists",
            {"limit": clamp_limit(limit), "offset": max(0, int(offset))},
        )

    async def get_audio_features(self, session_id: str, track_ids: list[str]) -> AudioFeaturesResult:
        """Fetch features in batches of at most 100 ids, one request per batch.

        A failed batch contributes no features and is reported in ``errors``;
        the other batches are unaffected.
        """
        ids = list(dict.fromkeys(i for i in track_ids if i))
        result = AudioFeaturesResult()
        if not ids:
            return result

        batches = _chunks(ids, AUDIO_FEATURES_BATCH)
        result.batches = len(batches)
        outcomes = await gather_settled(
            *(self.call(session_id, "GET", "/audio-features", {"ids": ",".join(b)}) for b in batches)
        )
        for batch, outcome in zip(batches, outcomes):
            if not outcome.ok:
                result.errors.append(outcome.error)
                continue
            rows = (outcome.value or {}).get("audio_features") or []
            for position, row in enumerate(rows):
                if not isinstance(row, dict):
                    continue
                track_id = row.get("id") or (batch[position] if position < len(batch) else None)
                if track_id in batch:
                    result.features[track_id] = row
        if result.errors:
            logger.warning(
                "audio feature batches failed",
                extra={"meta": {"failed": len(result.errors), "batches": result.batches}},
            )
        return result
