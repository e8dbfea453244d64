from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..errors import VibeifyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    value: T | None = None
    error: VibeifyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle(aw: Awaitable[T]) -> Outcome[T]:
    """Await ``aw`` and capture success or failure instead of raising."""
    try:
        return Outcome(value=await aw)
    except VibeifyError as e:
        return Outcome(error=e)
    except Exception as e:
        logger.exception("unexpected error in fan-out call")
        return Outcome(error=VibeifyError(f"Unexpected error: {type(e).__name__}"))


async def gather_settled(*aws: Awaitable[Any]) -> list[Outcome[Any]]:
    """Run every awaitable concurrently and wait for all of them (a join, not a race)."""
    return list(await asyncio.gather(*(settle(aw) for aw in aws)))
