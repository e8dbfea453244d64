import httpx
import pytest

from tests.conftest import token_reply
from vibeify.errors import SessionExpired, UpstreamAuthError, UpstreamError
from vibeify.spotify.aggregate import (
    average_features,
    first_non_empty,
    genre_counts,
    tracks_from_recent,
)
from vibeify.util.aio import Outcome

PROFILE = {"id": "user-1", "display_name": "Test User"}


def _artist(name, *genres):
    return {"id": name.lower(), "name": name, "genres": list(genres)}


def _track(track_id):
    return {"id": track_id, "name": f"Song {track_id}", "uri": f"spotify:track:{track_id}"}


def _top_handler(artists=None, tracks=None):
    """Serve /me/top/{kind} by time_range from the given dicts."""
    artists = artists or {}
    tracks = tracks or {}

    def handle(request):
        kind = request.url.path.rsplit("/", 1)[-1]
        source = artists if kind == "artists" else tracks
        reply = source.get(request.url.params["time_range"], [])
        if isinstance(reply, int):
            return httpx.Response(reply, json={"error": {"status": reply, "message": "upstream says no"}})
        return httpx.Response(200, json={"items": reply})

    return handle


def _features_handler(request):
    ids = request.url.params["ids"].split(",")
    return httpx.Response(
        200,
        json={"audio_features": [{"id": i, "energy": 0.8, "valence": 0.6, "danceability": 0.7} for i in ids]},
    )


def _wire(spotify, *, artists=None, tracks=None, recent=None, playlists=(200, {"items": [{"id": "pl1"}]})):
    spotify.on("GET", "/v1/me", (200, PROFILE))
    handler = _top_handler(artists, tracks)
    spotify.on("GET", "/v1/me/top/artists", handler)
    spotify.on("GET", "/v1/me/top/tracks", handler)
    spotify.on("GET", "/v1/me/player/recently-played", recent or (200, {"items": []}))
    spotify.on("GET", "/v1/me/playlists", playlists)
    spotify.on("GET", "/v1/audio-features", _features_handler)


# -- pure helpers -----------------------------------------------------------


def test_first_non_empty_prefers_short_term():
    by_range = {
        "short_term": Outcome(value={"items": []}),
        "medium_term": Outcome(value={"items": [{"id": "m"}]}),
        "long_term": Outcome(value={"items": [{"id": "l"}]}),
    }
    items, time_range, error = first_non_empty(by_range)
    assert items == [{"id": "m"}]
    assert time_range == "medium_term"
    assert error is None


def test_first_non_empty_reports_first_error_when_nothing_found():
    err = UpstreamError("boom", status_code=500)
    by_range = {
        "short_term": Outcome(value={"items": []}),
        "medium_term": Outcome(error=err),
        "long_term": Outcome(value={"items": []}),
    }
    assert first_non_empty(by_range) == ([], None, err)


def test_tracks_from_recent_dedupes_in_recency_order():
    events = [
        {"track": _track("a")},
        {"track": _track("b")},
        {"track": _track("a")},
        {"played_at": "no track"},
        {"track": _track("c")},
    ]
    assert [t["id"] for t in tracks_from_recent(events, 10)] == ["a", "b", "c"]
    assert [t["id"] for t in tracks_from_recent(events, 2)] == ["a", "b"]


def test_genre_counts_orders_by_count_then_first_seen():
    artists = [
        _artist("A", "indie pop", "rock"),
        _artist("B", "rock", "jazz"),
        _artist("C", "jazz", "indie pop", "rock"),
        _artist("D"),
    ]
    assert genre_counts(artists) == [
        {"genre": "rock", "count": 3},
        {"genre": "indie pop", "count": 2},
        {"genre": "jazz", "count": 2},
    ]
    assert genre_counts(artists, top_n=1) == [{"genre": "rock", "count": 3}]


def test_average_features_skips_missing_rows_and_values():
    rows = [
        {"energy": 0.2, "valence": 0.4},
        None,
        {"energy": 0.6},
        {"energy": None, "valence": "n/a"},
    ]
    assert average_features(rows) == {"energy": 0.4, "valence": 0.4}


def test_average_features_empty():
    assert average_features([]) is None
    assert average_features([None, None]) is None


# -- summarize --------------------------------------------------------------


@pytest.mark.asyncio
async def test_summary_uses_first_non_empty_range(aggregator, spotify, seed):
    sid = seed()
    _wire(
        spotify,
        artists={"short_term": [], "medium_term": [_artist("X", "indie rock")]},
        tracks={"short_term": [], "medium_term": [], "long_term": [_track("t1"), _track("t2")]},
    )

    summary = await aggregator.summarize(sid)

    assert summary["profile"] == PROFILE
    assert summary["topArtistsRange"] == "medium_term"
    assert [a["name"] for a in summary["topArtists"]] == ["X"]
    assert summary["topTracksSource"] == "long_term"
    assert [t["id"] for t in summary["topTracks"]] == ["t1", "t2"]
    assert summary["topTracksByRange"]["short_term"] == []
    assert summary["topGenres"] == [{"genre": "indie rock", "count": 1}]
    assert summary["audioFeatures"]["trackCount"] == 2
    assert summary["audioFeatures"]["averages"]["energy"] == 0.8
    assert summary["mood"]["profile"]["energy"] == 80
    assert summary["errors"] == {}


@pytest.mark.asyncio
async def test_summary_falls_back_to_recently_played(aggregator, spotify, seed):
    sid = seed()
    recent = {"items": [{"track": _track("r1")}, {"track": _track("r2")}, {"track": _track("r1")}]}
    _wire(spotify, recent=(200, recent))

    summary = await aggregator.summarize(sid)

    assert summary["topTracksSource"] == "recently_played"
    assert [t["id"] for t in summary["topTracks"]] == ["r1", "r2"]
    assert summary["audioFeatures"]["trackCount"] == 2
    assert "topTracks" not in summary["errors"]


@pytest.mark.asyncio
async def test_summary_with_no_data_anywhere(aggregator, spotify, seed):
    sid = seed()
    _wire(spotify)

    summary = await aggregator.summarize(sid)

    assert summary["topTracks"] == []
    assert summary["topTracksSource"] is None
    assert summary["topArtists"] == []
    assert summary["audioFeatures"] == {"averages": None, "trackCount": 0}
    assert summary["mood"]["profile"]["happiness"] == 50
    assert summary["errors"] == {}
    assert spotify.calls("GET", "/v1/audio-features") == []


@pytest.mark.asyncio
async def test_partial_failure_is_reported_per_section(aggregator, spotify, seed):
    sid = seed()
    _wire(
        spotify,
        artists={"short_term": [_artist("Y", "rap")]},
        tracks={"short_term": [_track("t1")]},
        playlists=(404, {"error": {"status": 404, "message": "Playlists unavailable"}}),
    )

    summary = await aggregator.summarize(sid)

    assert summary["playlists"] is None
    assert summary["errors"] == {
        "playlists": {"code": "upstream_error", "message": "Playlists unavailable", "status": 404}
    }
    assert summary["topArtists"][0]["name"] == "Y"
    assert summary["mood"]["personality"]["name"] == "The Rhythm Master"


@pytest.mark.asyncio
async def test_failed_range_surfaces_when_no_range_has_data(aggregator, spotify, seed):
    sid = seed()
    _wire(spotify, artists={"short_term": [], "medium_term": 404, "long_term": []})

    summary = await aggregator.summarize(sid)

    assert summary["topArtists"] == []
    assert summary["errors"]["topArtists"]["status"] == 404
    assert summary["topArtistsByRange"]["medium_term"] is None


@pytest.mark.asyncio
async def test_failed_range_is_ignored_when_another_has_data(aggregator, spotify, seed):
    sid = seed()
    _wire(spotify, artists={"short_term": 404, "medium_term": [_artist("Z", "jazz")]})

    summary = await aggregator.summarize(sid)

    assert summary["topArtistsRange"] == "medium_term"
    assert "topArtists" not in summary["errors"]


@pytest.mark.asyncio
async def test_audio_feature_failure_keeps_rest_of_summary(aggregator, spotify, seed):
    sid = seed()
    _wire(spotify, tracks={"short_term": [_track("t1")]})
    spotify.on("GET", "/v1/audio-features", (403, {"error": {"status": 403, "message": "Forbidden"}}))

    summary = await aggregator.summarize(sid)

    assert summary["topTracks"][0]["id"] == "t1"
    assert summary["audioFeatures"] == {"averages": None, "trackCount": 0}
    assert summary["errors"]["audioFeatures"]["status"] == 403


@pytest.mark.asyncio
async def test_profile_auth_failure_fails_whole_summary(aggregator, spotify, seed):
    sid = seed()
    _wire(spotify)
    spotify.on("POST", "/api/token", token_reply("access-new"))
    spotify.on("GET", "/v1/me", (401, {"error": {"status": 401, "message": "The access token expired"}}))

    with pytest.raises(UpstreamAuthError):
        await aggregator.summarize(sid)

    assert len(spotify.calls("POST", "/api/token")) == 1
    assert len(spotify.calls("GET", "/v1/me")) == 2


@pytest.mark.asyncio
async def test_profile_401_with_revoked_refresh_is_session_expired(aggregator, spotify, store, seed):
    sid = seed(expires_in=None)
    _wire(spotify)
    spotify.on("POST", "/api/token", (400, {"error": "invalid_grant"}))
    spotify.on("GET", "/v1/me", (401, {"error": {"status": 401, "message": "The access token expired"}}))

    with pytest.raises(SessionExpired):
        await aggregator.summarize(sid)

    assert sid not in store


@pytest.mark.asyncio
async def test_expired_session_refreshes_once_for_whole_summary(aggregator, spotify, seed):
    sid = seed(expires_in=-5)
    spotify.on("POST", "/api/token", token_reply("access-new"))
    _wire(spotify, tracks={"short_term": [_track("t1")]})

    await aggregator.summarize(sid)

    assert len(spotify.calls("POST", "/api/token")) == 1
    auth = {r.headers["Authorization"] for r in spotify.requests if r.url.host == "api.spotify.com"}
    assert auth == {"Bearer access-new"}


@pytest.mark.asyncio
async def test_failed_refresh_fails_summary(aggregator, spotify, seed, store):
    sid = seed(expires_in=-5)
    spotify.on("POST", "/api/token", (400, {"error": "invalid_grant"}))

    with pytest.raises(SessionExpired):
        await aggregator.summarize(sid)
    assert sid not in store
