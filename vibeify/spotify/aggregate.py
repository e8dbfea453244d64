"""Vibe summary: one response composed from many Spotify calls.

Every upstream call runs concurrently and settles independently, so a failed
section is reported in ``errors`` while the rest of the summary is still
returned. Only an auth failure on the profile (the session itself is no good)
aborts the whole summary.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from ..errors import AUTH_ERRORS, VibeifyError
from ..util.aio import Outcome, gather_settled
from . import mood
from .client import SpotifyProxy
from .config import AUDIO_FEATURE_KEYS, TIME_RANGES

logger = logging.getLogger(__name__)

RECENTLY_PLAYED = "recently_played"


def _items(outcome: Outcome) -> list[dict[str, Any]]:
    value = outcome.value if outcome.ok else None
    items = (value or {}).get("items") if isinstance(value, dict) else None
    return [i for i in (items or []) if isinstance(i, dict)]


def error_entry(error: VibeifyError) -> dict[str, Any]:
    return {"code": error.code, "message": error.message, "status": error.status_code}


def first_non_empty(
    by_range: dict[str, Outcome],
) -> tuple[list[dict[str, Any]], str | None, VibeifyError | None]:
    """Walk time ranges in priority order and take the first with items.

    When nothing is found the first failure (if any) is returned, since the
    failed range may have been the one holding data.
    """
    first_error = None
    for time_range in TIME_RANGES:
        outcome = by_range.get(time_range)
        if outcome is None:
            continue
        if not outcome.ok:
            first_error = first_error or outcome.error
            continue
        items = _items(outcome)
        if items:
            return items, time_range, None
    return [], None, first_error


def tracks_from_recent(play_events: list[dict[str, Any]], limit: int) -> list[dict[str, Any]]:
    """Track objects from play history, most recent first, without repeats."""
    seen: set[str] = set()
    tracks = []
    for event in play_events:
        track = event.get("track")
        if not isinstance(track, dict):
            continue
        key = track.get("id") or track.get("uri") or track.get("name")
        if not key or key in seen:
            continue
        seen.add(key)
        tracks.append(track)
        if len(tracks) >= limit:
            break
    return tracks


def genre_counts(artists: list[dict[str, Any]], top_n: int = 10) -> list[dict[str, Any]]:
    counts: Counter[str] = Counter()
    first_seen: dict[str, int] = {}
    for artist in artists:
        for genre in artist.get("genres") or []:
            if not genre:
                continue
            first_seen.setdefault(genre, len(first_seen))
            counts[genre] += 1
    ranked = sorted(counts, key=lambda g: (-counts[g], first_seen[g]))
    return [{"genre": g, "count": counts[g]} for g in ranked[:top_n]]


def average_features(rows: list[dict[str, Any] | None]) -> dict[str, float] | None:
    """Mean of each feature over rows that have it; rows without data are skipped."""
    sums = dict.fromkeys(AUDIO_FEATURE_KEYS, 0.0)
    counts = dict.fromkeys(AUDIO_FEATURE_KEYS, 0)
    for row in rows:
        if not row:
            continue
        for key in AUDIO_FEATURE_KEYS:
            value = row.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                sums[key] += value
                counts[key] += 1
    averages = {k: round(sums[k] / counts[k], 4) for k in AUDIO_FEATURE_KEYS if counts[k]}
    return averages or None


class VibeAggregator:
    def __init__(
        self,
        proxy: SpotifyProxy,
        *,
        limit: int = 20,
        recent_limit: int = 50,
        playlist_limit: int = 20,
        top_genres: int = 10,
    ) -> None:
        self._proxy = proxy
        self.limit = limit
        self.recent_limit = recent_limit
        self.playlist_limit = playlist_limit
        self.top_genres = top_genres

    async def summarize(self, session_id: str | None) -> dict[str, Any]:
        # Refresh once up front; a dead session fails the whole request as 401
        await self._proxy.ensure_fresh(session_id)

        p = self._proxy
        calls = [p.get_profile(session_id)]
        calls += [p.get_top(session_id, "artists", time_range=tr, limit=self.limit) for tr in TIME_RANGES]
        calls += [p.get_top(session_id, "tracks", time_range=tr, limit=self.limit) for tr in TIME_RANGES]
        calls.append(p.get_recently_played(session_id, limit=self.recent_limit))
        calls.append(p.get_playlists(session_id, limit=self.playlist_limit))

        outcomes = await gather_settled(*calls)
        n = len(TIME_RANGES)
        profile = outcomes[0]
        artists_by_range = dict(zip(TIME_RANGES, outcomes[1 : 1 + n]))
        tracks_by_range = dict(zip(TIME_RANGES, outcomes[1 + n : 1 + 2 * n]))
        recent, playlists = outcomes[1 + 2 * n], outcomes[2 + 2 * n]

        if not profile.ok and isinstance(profile.error, AUTH_ERRORS):
            raise profile.error

        errors: dict[str, dict[str, Any]] = {}
        if not profile.ok:
            errors["profile"] = error_entry(profile.error)

        top_artists, artists_range, artists_error = first_non_empty(artists_by_range)
        if artists_error is not None:
            errors["topArtists"] = error_entry(artists_error)

        recent_items = _items(recent)
        if not recent.ok:
            errors["recentlyPlayed"] = error_entry(recent.error)

        top_tracks, tracks_source, tracks_error = first_non_empty(tracks_by_range)
        if not top_tracks:
            top_tracks = tracks_from_recent(recent_items, self.limit)
            if top_tracks:
                tracks_source, tracks_error = RECENTLY_PLAYED, None
            elif tracks_error is None and not recent.ok:
                tracks_error = recent.error
        if tracks_error is not None:
            errors["topTracks"] = error_entry(tracks_error)

        if not playlists.ok:
            errors["playlists"] = error_entry(playlists.error)

        track_ids = [t["id"] for t in top_tracks if t.get("id")]
        features = await p.get_audio_features(session_id, track_ids)
        if features.errors:
            errors["audioFeatures"] = error_entry(features.errors[0])
        feature_rows = features.ordered(track_ids)
        averages = average_features(feature_rows)

        genres = genre_counts(top_artists, self.top_genres)

        if errors:
            logger.info("vibe summary partial", extra={"meta": {"failed_sections": sorted(errors)}})

        return {
            "profile": profile.value if profile.ok else None,
            "topArtists": top_artists,
            "topArtistsRange": artists_range,
            "topTracks": top_tracks,
            "topTracksSource": tracks_source,
            "topArtistsByRange": {tr: _items(o) if o.ok else None for tr, o in artists_by_range.items()},
            "topTracksByRange": {tr: _items(o) if o.ok else None for tr, o in tracks_by_range.items()},
            "recentlyPlayed": recent_items if recent.ok else None,
            "playlists": _items(playlists) if playlists.ok else None,
            "topGenres": genres,
            "audioFeatures": {
                "averages": averages,
                "trackCount": sum(1 for row in feature_rows if row),
            },
            "mood": mood.describe(averages, [g["genre"] for g in genres]),
            "errors": errors,
        }
