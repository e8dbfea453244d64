from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from .. import cookies
from ..http_errors import error_response
from ..sessions import SessionStore
from ..settings import Settings
from ..spotify import SpotifyProxy, VibeAggregator
from ..spotify.aggregate import error_entry
from ..spotify.config import DEFAULT_TIME_RANGE, MAX_PAGE_LIMIT
from .deps import (
    current_session_id,
    get_aggregator,
    get_proxy,
    get_settings,
    get_store,
    require_session,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["spotify"])

TimeRange = Literal["short_term", "medium_term", "long_term"]
TopType = Literal["artists", "tracks"]


@router.get("/me")
async def me(
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> Any:
    return await proxy.get_profile(session_id)


@router.get("/top/{kind}")
async def top(
    kind: TopType,
    time_range: TimeRange = DEFAULT_TIME_RANGE,
    limit: int = Query(20, ge=1, le=MAX_PAGE_LIMIT),
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> Any:
    return await proxy.get_top(session_id, kind, time_range=time_range, limit=limit)


@router.get("/recently-played")
async def recently_played(
    limit: int = Query(20, ge=1, le=MAX_PAGE_LIMIT),
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> Any:
    return await proxy.get_recently_played(session_id, limit=limit)


@router.get("/playlists")
async def playlists(
    limit: int = Query(20, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> Any:
    return await proxy.get_playlists(session_id, limit=limit, offset=offset)


@router.get("/now-playing")
async def now_playing(
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> Any:
    return await proxy.get_now_playing(session_id)


@router.get("/audio-features")
async def audio_features(
    ids: str = Query(..., description="Comma-separated Spotify track ids"),
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> Any:
    """Features for any number of tracks, fetched 100 ids per upstream request.

    Rows come back in the order of ``ids`` with ``null`` for unknown tracks. A
    failed batch only nulls its own rows; if every batch failed the first
    error is returned as the response.
    """
    track_ids = [i.strip() for i in ids.split(",") if i.strip()]
    if not track_ids:
        return error_response("invalid_request", "ids must name at least one track", status=400)

    result = await proxy.get_audio_features(session_id, track_ids)
    if result.errors and len(result.errors) == result.batches:
        raise result.errors[0]

    body: dict[str, Any] = {"audio_features": result.ordered(track_ids)}
    if result.errors:
        body["errors"] = [error_entry(e) for e in result.errors]
    return body


@router.get("/vibe-summary")
async def vibe_summary(
    session_id: str = Depends(require_session),
    aggregator: VibeAggregator = Depends(get_aggregator),
) -> Any:
    return await aggregator.summarize(session_id)


@router.post("/refresh-token")
async def refresh_token(
    session_id: str = Depends(require_session),
    proxy: SpotifyProxy = Depends(get_proxy),
) -> dict:
    record = await proxy.force_refresh(session_id)
    return {"refreshed": True, "expiresAt": record.expires_at}


@router.post("/logout")
async def logout(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
) -> JSONResponse:
    deleted = await store.delete(current_session_id(request))
    response = JSONResponse({"ok": True})
    cookies.clear_session_cookie(response, settings)
    logger.info("logout", extra={"meta": {"had_session": deleted}})
    return response
