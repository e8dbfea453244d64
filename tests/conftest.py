"""Shared fixtures: settings, a controllable clock, and a fake Spotify.

``FakeSpotify`` sits behind ``httpx.MockTransport`` and serves canned replies
keyed by ``(method, path)``. Paths are as Spotify sees them, e.g. ``/v1/me``
for the Web API and ``/api/token`` for the accounts service.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from vibeify import cookies
from vibeify.main import create_app
from vibeify.sessions import SessionRecord, SessionStore
from vibeify.settings import Settings
from vibeify.spotify import SpotifyProxy, TokenExchangeClient, VibeAggregator

TEST_SECRET = "test-session-secret-0123456789abcdef"

Reply = Any  # (status, json) | (status, json, headers) | httpx.Response | callable(request)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` in retry loops; records each delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeSpotify:
    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Reply) -> None:
        """Queue replies for a route; the last one repeats once the rest are used."""
        self.routes[(method.upper(), path)] = list(replies)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    @staticmethod
    def _build(reply: Reply, request: httpx.Request) -> httpx.Response:
        if isinstance(reply, httpx.Response):
            return reply
        if callable(reply):
            return reply(request)
        status, body, *rest = reply
        headers = rest[0] if rest else None
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # Yield so concurrent callers genuinely interleave
        await asyncio.sleep(0)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"status": 404, "message": "Service not found"}})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return self._build(reply, request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def token_reply(
    access_token: str = "access-new",
    *,
    refresh_token: str | None = None,
    expires_in: int = 3600,
) -> tuple[int, dict]:
    body: dict[str, Any] = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "scope": "user-top-read",
    }
    if refresh_token:
        body["refresh_token"] = refresh_token
    return 200, body


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "SPOTIFY_CLIENT_ID": "client-id",
        "SPOTIFY_CLIENT_SECRET": "client-secret",
        "SESSION_SECRET": TEST_SECRET,
        "SPOTIFY_REDIRECT_URI": "http://testserver/auth/callback",
        "FRONTEND_URI": "http://localhost:3000",
        "ENV": "dev",
        "COOKIE_SECURE": "",
        "RETRY_ATTEMPTS": 3,
        "RETRY_BASE_DELAY": 0.5,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def spotify() -> FakeSpotify:
    return FakeSpotify()


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(clock=clock)


@pytest.fixture
async def http(spotify: FakeSpotify):
    async with httpx.AsyncClient(transport=spotify.transport) as client:
        yield client


@pytest.fixture
def oauth(http, settings, sleeps) -> TokenExchangeClient:
    return TokenExchangeClient(http, settings, sleep=sleeps)


@pytest.fixture
def proxy(http, store, oauth, settings, sleeps) -> SpotifyProxy:
    return SpotifyProxy(http, store, oauth, settings, sleep=sleeps)


@pytest.fixture
def aggregator(proxy) -> VibeAggregator:
    return VibeAggregator(proxy)


@pytest.fixture
def seed(store: SessionStore, clock: FakeClock) -> Callable[..., str]:
    """Create a session directly in the store; ``expires_in`` is relative to the clock."""

    def _seed(
        access_token: str = "access-old",
        refresh_token: str = "refresh-old",
        expires_in: float | None = 3600,
    ) -> str:
        expires_at = None if expires_in is None else clock.now + expires_in
        return store.create(
            SessionRecord(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                created_at=clock.now,
            )
        )

    return _seed


@pytest.fixture
def app(settings, spotify, store, sleeps):
    return create_app(settings, transport=spotify.transport, store=store, sleep=sleeps)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def session_cookie(settings) -> Callable[[str], dict[str, str]]:
    """Request headers carrying a signed session cookie for ``session_id``."""

    def _headers(session_id: str) -> dict[str, str]:
        signed = cookies.sign_value(settings, "session", session_id, 3600)
        return {"Cookie": f"{settings.SESSION_COOKIE_NAME}={signed}"}

    return _headers
