"""
Session store. Keyed, TTL'd storage of serialized sessions.

Redis OR in-process dict, controlled by FF_USE_REDIS.
Both expose the same interface:
  get(session_id)            → record dict | None
  put(session_id, record)    → stores with the configured TTL
  delete(session_id)
  lock(session_id)           → async context manager serializing turns;
                               raises SessionBusy if the wait times out
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from ..core.config import get_settings
from ..core.errors import SessionBusy
from ..core.flags import get_flags
from ..core.redis import get_redis

logger = logging.getLogger(__name__)

LOCK_EXPIRY_MARGIN = 30.0
SWEEP_INTERVAL_SECONDS = 60.0


def _key(session_id: str) -> str:
    return f"session:{session_id}"


class SessionStore(ABC):
    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or get_settings().session_ttl_seconds

    @abstractmethod
    async def get(self, session_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def put(self, session_id: str, record: dict, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    def lock(self, session_id: str):
        """Async context manager held for the duration of one turn."""
        ...


class RedisSessionStore(SessionStore):
    def __init__(self, client=None, ttl_seconds: Optional[int] = None):
        super().__init__(ttl_seconds)
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_redis()
        return self._client

    async def get(self, session_id: str) -> Optional[dict]:
        raw = await self.client.get(_key(session_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, session_id: str, record: dict, ttl: Optional[int] = None) -> None:
        await self.client.set(_key(session_id), json.dumps(record), ex=ttl or self.ttl_seconds)

    async def delete(self, session_id: str) -> None:
        await self.client.delete(_key(session_id))

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        settings = get_settings()
        lock = self.client.lock(
            f"lock:{_key(session_id)}",
            # Auto-expiry must outlast the whole-turn deadline
            timeout=settings.turn_timeout_seconds + LOCK_EXPIRY_MARGIN,
            blocking_timeout=settings.session_lock_timeout_seconds,
        )
        if not await lock.acquire():
            raise SessionBusy(session_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except Exception as e:
                logger.warning("Session lock release failed (session=%s): %s", session_id, e)


@dataclass
class _LocalLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # holder plus waiters


class InMemorySessionStore(SessionStore):
    """Single-process store. Expired entries are dropped on read and swept on write."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock=time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._data: dict[str, tuple[float, str]] = {}
        self._locks: dict[str, _LocalLock] = {}
        self._next_sweep = 0.0

    async def get(self, session_id: str) -> Optional[dict]:
        entry = self._data.get(session_id)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            self._data.pop(session_id, None)
            logger.debug("Session expired: %s", session_id)
            return None
        return json.loads(payload)

    async def put(self, session_id: str, record: dict, ttl: Optional[int] = None) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        # Stored as JSON so callers never share mutable state with the store
        self._data[session_id] = (now + (ttl or self.ttl_seconds), json.dumps(record))

    async def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def _sweep(self, now: float) -> None:
        expired = [sid for sid, (expires_at, _) in self._data.items() if now >= expires_at]
        for sid in expired:
            del self._data[sid]
        self._next_sweep = now + SWEEP_INTERVAL_SECONDS
        if expired:
            logger.debug("Swept %d expired sessions", len(expired))

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        entry = self._locks.setdefault(session_id, _LocalLock())
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=get_settings().session_lock_timeout_seconds)
            except asyncio.TimeoutError as e:
                raise SessionBusy(session_id) from e
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(session_id, None)


# ── Global store ─────────────────────────────────────────────────────

_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Return the active session store based on feature flags."""
    global _store
    if _store is None:
        if get_flags().use_redis:
            _store = RedisSessionStore()
            logger.info("Session store: redis")
        else:
            _store = InMemorySessionStore()
            logger.info("Session store: in-memory")
    return _store


def set_session_store(store: Optional[SessionStore]) -> None:
    """Swap the global store (app startup and tests)."""
    global _store
    _store = store
