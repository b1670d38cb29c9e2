"""Tests for the Redis and in-memory session stores."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from formdesk.core.config import get_settings
from formdesk.core.errors import SessionBusy
from formdesk.core.flags import get_flags
from formdesk.services import session_store
from formdesk.services.session_store import InMemorySessionStore, RedisSessionStore, get_session_store


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryStore:
    async def test_put_get_delete(self):
        store = InMemorySessionStore()
        await store.put("s", {"session_id": "s", "history": []})
        assert await store.get("s") == {"session_id": "s", "history": []}
        await store.delete("s")
        assert await store.get("s") is None

    async def test_returned_records_are_copies(self):
        store = InMemorySessionStore()
        record = {"session_id": "s", "history": []}
        await store.put("s", record)
        record["history"].append("mutated")
        loaded = await store.get("s")
        loaded["history"].append("also mutated")
        assert (await store.get("s"))["history"] == []

    async def test_entries_expire(self):
        clock = FakeClock()
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        await store.put("s", {"session_id": "s"})

        clock.now += 59
        assert await store.get("s") is not None
        clock.now += 2
        assert await store.get("s") is None

    async def test_put_refreshes_ttl(self):
        clock = FakeClock()
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        await store.put("s", {"session_id": "s"})
        clock.now += 50
        await store.put("s", {"session_id": "s"})
        clock.now += 50
        assert await store.get("s") is not None

    async def test_lock_serializes_turns_per_session(self):
        store = InMemorySessionStore()
        events = []

        async def turn(name: str):
            async with store.lock("s"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(turn("a"), turn("b"))
        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    async def test_different_sessions_do_not_block(self):
        store = InMemorySessionStore()
        async with store.lock("one"):
            await asyncio.wait_for(_enter(store, "two"), timeout=1)

    async def test_lock_wait_timeout_means_busy(self, monkeypatch):
        monkeypatch.setenv("SESSION_LOCK_TIMEOUT_SECONDS", "0.01")
        get_settings.cache_clear()
        store = InMemorySessionStore()

        async with store.lock("s"):
            with pytest.raises(SessionBusy):
                await _enter(store, "s")

    async def test_released_locks_are_dropped(self):
        store = InMemorySessionStore()
        await asyncio.gather(*(_enter(store, f"s{i}") for i in range(50)), _enter(store, "s0"))
        assert store._locks == {}

    async def test_expired_sessions_swept_on_put(self):
        clock = FakeClock()
        store = InMemorySessionStore(ttl_seconds=60, clock=clock)
        for i in range(100):
            await store.put(f"s{i}", {"session_id": f"s{i}"})

        clock.now += 120
        await store.put("fresh", {"session_id": "fresh"})

        assert list(store._data) == ["fresh"]


async def _enter(store, session_id):
    async with store.lock(session_id):
        return True


class TestRedisStore:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.set = AsyncMock()
        client.delete = AsyncMock()
        return client

    async def test_put_sets_ttl(self, client):
        store = RedisSessionStore(client=client, ttl_seconds=120)
        await store.put("abc", {"session_id": "abc"})
        client.set.assert_awaited_once_with("session:abc", json.dumps({"session_id": "abc"}), ex=120)

    async def test_get_decodes_json(self, client):
        client.get.return_value = json.dumps({"session_id": "abc"})
        store = RedisSessionStore(client=client)
        assert await store.get("abc") == {"session_id": "abc"}
        client.get.assert_awaited_once_with("session:abc")

    async def test_missing_key(self, client):
        assert await RedisSessionStore(client=client).get("abc") is None

    async def test_lock_acquired_and_released(self, client):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=True)
        lock.release = AsyncMock()
        client.lock.return_value = lock

        async with RedisSessionStore(client=client).lock("abc"):
            pass

        assert client.lock.call_args.args[0] == "lock:session:abc"
        lock.release.assert_awaited_once()

    async def test_lock_outlives_turn_deadline(self, client):
        lock = MagicMock(acquire=AsyncMock(return_value=True), release=AsyncMock())
        client.lock.return_value = lock

        async with RedisSessionStore(client=client).lock("abc"):
            pass

        settings = get_settings()
        assert client.lock.call_args.kwargs["timeout"] > settings.turn_timeout_seconds
        assert client.lock.call_args.kwargs["blocking_timeout"] == settings.session_lock_timeout_seconds

    async def test_lock_wait_timeout_means_busy(self, client):
        lock = MagicMock(acquire=AsyncMock(return_value=False), release=AsyncMock())
        client.lock.return_value = lock
        ran = False

        with pytest.raises(SessionBusy):
            async with RedisSessionStore(client=client).lock("abc"):
                ran = True

        assert not ran
        lock.release.assert_not_awaited()

    async def test_lock_error_is_not_swallowed(self, client):
        lock = MagicMock(acquire=AsyncMock(side_effect=ConnectionError("redis down")), release=AsyncMock())
        client.lock.return_value = lock

        with pytest.raises(ConnectionError):
            async with RedisSessionStore(client=client).lock("abc"):
                pass


class TestStoreSelection:
    def test_flag_selects_backend(self, monkeypatch):
        session_store.set_session_store(None)
        assert isinstance(get_session_store(), InMemorySessionStore)

        session_store.set_session_store(None)
        monkeypatch.setenv("FF_USE_REDIS", "true")
        get_flags.cache_clear()
        assert isinstance(get_session_store(), RedisSessionStore)
