"""Composition root for the FastAPI application."""

from __future__ import annotations

import asyncio
import logging
import os

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import auth, spotify
from .http_client import build_async_httpx_client
from .http_errors import install_error_handlers
from .logging_config import configure_logging
from .middleware import RequestIDMiddleware
from .retry import Sleep
from .sessions import SessionStore
from .settings import Settings, get_settings, validate_settings
from .spotify import SpotifyProxy, TokenExchangeClient, VibeAggregator
from .startup import lifespan

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    store: SessionStore | None = None,
    sleep: Sleep = asyncio.sleep,
) -> FastAPI:
    """Build the app with every service wired onto ``app.state``.

    ``transport`` replaces the network for the outbound Spotify client and
    ``sleep`` replaces the retry backoff wait; both exist for tests.
    Raises ``ConfigError`` before anything is wired if configuration is incomplete.
    """
    configure_logging()
    settings = validate_settings(settings) if settings is not None else get_settings()

    app = FastAPI(title="vibeify", version=__version__, lifespan=lifespan)

    sessions = store if store is not None else SessionStore()
    http = build_async_httpx_client(settings, transport=transport)
    oauth = TokenExchangeClient(http, settings, sleep=sleep)
    proxy = SpotifyProxy(http, sessions, oauth, settings, sleep=sleep)

    app.state.settings = settings
    app.state.sessions = sessions
    app.state.http = http
    app.state.oauth = oauth
    app.state.spotify = proxy
    app.state.aggregator = VibeAggregator(proxy)

    # Added last runs outermost, so CORS sees preflight before anything else
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URI],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Error-Code", "Retry-After"],
    )

    install_error_handlers(app)
    app.include_router(auth.router)
    app.include_router(spotify.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"ok": True}

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=os.getenv("HOST", "0.0.0.0"), port=settings.PORT)


if __name__ == "__main__":
    run()
