"""In-memory session store for upstream Spotify credentials.

Sessions are a cache of credentials, not a source of truth: nothing survives a
restart. All mutation of an existing record goes through ``transaction`` (or
``update``, built on it), which serialises work per session id with an
``asyncio.Lock`` so a refresh in one request cannot be overwritten by a stale
copy from another.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Union

from .util.ids import SESSION_ID_BYTES, random_token

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class SessionRecord:
    access_token: str
    refresh_token: str
    # None: lifetime unknown, treat as valid until Spotify answers 401
    expires_at: float | None
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float, skew: float = 0.0) -> bool:
        return self.expires_at is not None and self.expires_at - skew <= now

    def __repr__(self) -> str:
        # Keep secrets out of tracebacks and log lines
        return (
            f"SessionRecord(expires_at={self.expires_at!r}, created_at={self.created_at!r}, "
            f"access_token=<{len(self.access_token)} chars>, "
            f"refresh_token=<{len(self.refresh_token)} chars>)"
        )


Mutator = Callable[
    [SessionRecord],
    Union[SessionRecord, None, Awaitable[Union[SessionRecord, None]]],
]


class _Txn:
    """Handle yielded by ``SessionStore.transaction``."""

    def __init__(self, store: SessionStore, session_id: str, record: SessionRecord | None):
        self._store = store
        self.session_id = session_id
        self.record = record

    def save(self, record: SessionRecord) -> None:
        if self.session_id not in self._store._records:
            # Deleted by a logout that raced us; do not resurrect it
            return
        self._store._records[self.session_id] = record
        self.record = record

    def delete(self) -> None:
        self._store._evict(self.session_id)
        self.record = None


class SessionStore:
    def __init__(self, *, clock: Clock = time.time) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def now(self) -> float:
        return self._clock()

    def create(self, record: SessionRecord) -> str:
        session_id = random_token(SESSION_ID_BYTES)
        while session_id in self._records:
            session_id = random_token(SESSION_ID_BYTES)
        self._records[session_id] = record
        logger.info("session created", extra={"meta": {"sessions": len(self._records)}})
        return session_id

    def get(self, session_id: str | None) -> SessionRecord | None:
        """Return a snapshot of the record; mutate only through ``update``."""
        if not session_id:
            return None
        rec = self._records.get(session_id)
        return replace(rec) if rec is not None else None

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _evict(self, session_id: str) -> bool:
        removed = self._records.pop(session_id, None) is not None
        # The lock object stays reachable by any waiter already holding a reference
        self._locks.pop(session_id, None)
        return removed

    @asynccontextmanager
    async def transaction(self, session_id: str) -> AsyncIterator[_Txn]:
        """Hold the per-session lock and expose the current record.

        ``txn.record`` is ``None`` when the session does not exist (or was
        deleted while we waited for the lock).
        """
        lock = self._lock_for(session_id)
        async with lock:
            current = self._records.get(session_id)
            try:
                yield _Txn(self, session_id, replace(current) if current is not None else None)
            finally:
                if session_id not in self._records and self._locks.get(session_id) is lock:
                    del self._locks[session_id]

    async def update(self, session_id: str, mutator: Mutator) -> SessionRecord | None:
        """Atomically replace a record with ``mutator(record)``.

        The mutator may be sync or async; returning ``None`` deletes the
        session. Returns the stored record, or ``None`` when the session is
        missing or was deleted.
        """
        async with self.transaction(session_id) as txn:
            if txn.record is None:
                return None
            result = mutator(txn.record)
            if inspect.isawaitable(result):
                result = await result
            if result is None:
                txn.delete()
                return None
            txn.save(result)
            return txn.record

    async def delete(self, session_id: str | None) -> bool:
        if not session_id or session_id not in self._records:
            return False
        async with self.transaction(session_id) as txn:
            existed = txn.record is not None
            txn.delete()
        if existed:
            logger.info("session deleted", extra={"meta": {"sessions": len(self._records)}})
        return existed

    async def sweep_expired(self) -> int:
        """Remove every session whose ``expires_at`` has passed. Returns the count."""
        now = self.now()
        candidates = [sid for sid, rec in self._records.items() if rec.is_expired(now)]
        removed = 0
        for sid in candidates:
            async with self.transaction(sid) as txn:
                # A concurrent refresh may have extended it while we waited
                if txn.record is not None and txn.record.is_expired(self.now()):
                    txn.delete()
                    removed += 1
        if removed:
            logger.info(
                "expired sessions swept",
                extra={"meta": {"removed": removed, "remaining": len(self._records)}},
            )
        return removed


async def run_sweeper(store: SessionStore, interval: float, *, sleep=asyncio.sleep) -> None:
    """Sweep forever on a fixed interval; cancelled at shutdown."""
    logger.info("session sweeper started", extra={"meta": {"interval": interval}})
    while True:
        await sleep(interval)
        try:
            await store.sweep_expired()
        except Exception:
            logger.exception("session sweep failed")
