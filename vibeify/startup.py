"""Application lifespan: the session sweeper and shutdown of shared clients."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .sessions import run_sweeper

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def start_background_task(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(lambda t: _background_tasks.discard(t))
    return task


async def cancel_background_tasks(timeout: float = 2.0) -> None:
    if not _background_tasks:
        return
    tasks = list(_background_tasks)
    for t in tasks:
        t.cancel()
    await asyncio.wait(tasks, timeout=timeout)
    _background_tasks.clear()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    start_background_task(run_sweeper(app.state.sessions, settings.SESSION_SWEEP_INTERVAL))
    logger.info(
        "vibeify started",
        extra={"meta": {"env": settings.ENV, "redirect_uri": settings.SPOTIFY_REDIRECT_URI}},
    )
    try:
        yield
    finally:
        await cancel_background_tasks()
        await app.state.http.aclose()
        logger.info("vibeify stopped")
