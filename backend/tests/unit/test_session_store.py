"""Unit tests for the login session stores."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from challenge_gate.core.session import (
    MemorySessionStore,
    RedisSessionStore,
    build_session_store,
    get_session_store,
)


@pytest.mark.unit
class TestMemorySessionStore:
    """Test the in-process store."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = MemorySessionStore(ttl_seconds=60)

        await store.set("sid", "two_factor_auth_error", True)
        assert await store.get("sid", "two_factor_auth_error") is True
        assert await store.exists("sid", "two_factor_auth_error")

        await store.remove("sid", "two_factor_auth_error")
        assert not await store.exists("sid", "two_factor_auth_error")
        assert await store.get("sid", "two_factor_auth_error", "fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self):
        store = MemorySessionStore(ttl_seconds=60)

        await store.set("sid-a", "key", "a")
        await store.set("sid-b", "key", "b")

        assert await store.get("sid-a", "key") == "a"
        assert await store.get("sid-b", "key") == "b"

    @pytest.mark.asyncio
    async def test_clear_drops_session(self):
        store = MemorySessionStore(ttl_seconds=60)
        await store.set("sid", "key", 1)

        await store.clear("sid")

        assert not await store.exists("sid", "key")

    @pytest.mark.asyncio
    async def test_remove_missing_key_is_ignored(self):
        store = MemorySessionStore(ttl_seconds=60)
        await store.remove("sid", "nothing")
        await store.set("sid", "key", 1)
        await store.remove("sid", "nothing")
        assert await store.get("sid", "key") == 1

    @pytest.mark.asyncio
    async def test_expired_session_is_gone(self):
        store = MemorySessionStore(ttl_seconds=10)

        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            await store.set("sid", "key", "value")
        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1011.0
            assert await store.get("sid", "key") is None
            assert not await store.exists("sid", "key")

    @pytest.mark.asyncio
    async def test_new_session_sweeps_expired_ones(self):
        store = MemorySessionStore(ttl_seconds=1)

        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            for i in range(100):
                await store.set(f"sid-{i}", "two_factor_auth_passed", True)
        assert len(store._sessions) == 100

        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1010.0
            await store.set("fresh", "key", "value")

        assert list(store._sessions) == ["fresh"]

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_sessions(self):
        store = MemorySessionStore(ttl_seconds=10)

        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            await store.set("old", "key", 1)
            mock_time.monotonic.return_value = 1005.0
            await store.set("live", "key", 2)
            mock_time.monotonic.return_value = 1012.0
            await store.set("new", "key", 3)

            assert set(store._sessions) == {"live", "new"}
            assert await store.get("live", "key") == 2

    @pytest.mark.asyncio
    async def test_access_refreshes_expiry(self):
        store = MemorySessionStore(ttl_seconds=10)

        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            await store.set("sid", "key", "value")
        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1008.0
            assert await store.get("sid", "key") == "value"
        with patch("challenge_gate.core.session.time") as mock_time:
            mock_time.monotonic.return_value = 1016.0
            assert await store.get("sid", "key") == "value"

    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        store = MemorySessionStore(ttl_seconds=60)
        value = {"attempts": [1]}

        await store.set("sid", "key", value)
        value["attempts"].append(2)

        assert await store.get("sid", "key") == {"attempts": [1]}

    @pytest.mark.asyncio
    async def test_scoped_session(self):
        store = MemorySessionStore(ttl_seconds=60)
        session = store.scoped("sid")

        await session.set("key", "value")

        assert session.session_id == "sid"
        assert await store.get("sid", "key") == "value"
        assert await session.exists("key")
        await session.clear()
        assert not await session.exists("key")


@pytest.mark.unit
class TestRedisSessionStore:
    """Test the Redis store against a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.hget = AsyncMock(return_value=None)
        client.hset = AsyncMock()
        client.expire = AsyncMock()
        client.hdel = AsyncMock()
        client.hexists = AsyncMock(return_value=0)
        client.delete = AsyncMock()
        return client

    @pytest.fixture
    def store(self, redis_client):
        store = RedisSessionStore("redis://localhost:6379/0", ttl_seconds=300)
        store.get_redis = AsyncMock(return_value=redis_client)
        return store

    @pytest.mark.asyncio
    async def test_set_writes_json_and_refreshes_ttl(self, store, redis_client):
        await store.set("sid", "two_factor_auth_error_message", "Wrong code")

        redis_client.hset.assert_awaited_once_with(
            "login_session:sid", "two_factor_auth_error_message", json.dumps("Wrong code")
        )
        redis_client.expire.assert_awaited_once_with("login_session:sid", 300)

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, store, redis_client):
        redis_client.hget.return_value = "true"

        assert await store.get("sid", "two_factor_auth_error") is True
        redis_client.hget.assert_awaited_once_with("login_session:sid", "two_factor_auth_error")

    @pytest.mark.asyncio
    async def test_get_missing_returns_default(self, store):
        assert await store.get("sid", "missing", "default") == "default"

    @pytest.mark.asyncio
    async def test_exists_remove_clear(self, store, redis_client):
        redis_client.hexists.return_value = 1

        assert await store.exists("sid", "key") is True
        await store.remove("sid", "key")
        await store.clear("sid")

        redis_client.hdel.assert_awaited_once_with("login_session:sid", "key")
        redis_client.delete.assert_awaited_once_with("login_session:sid")


@pytest.mark.unit
class TestBuildSessionStore:
    """Test backend selection."""

    @patch("challenge_gate.core.session.settings")
    def test_memory_backend(self, mock_settings):
        mock_settings.SESSION_BACKEND = "memory"
        mock_settings.ENVIRONMENT = "development"
        mock_settings.SESSION_TTL_SECONDS = 120

        store = build_session_store()

        assert isinstance(store, MemorySessionStore)
        assert store.ttl_seconds == 120

    @patch("challenge_gate.core.session.settings")
    def test_redis_backend(self, mock_settings):
        mock_settings.SESSION_BACKEND = "redis"
        mock_settings.REDIS_URL = "redis://cache:6379/1"
        mock_settings.SESSION_TTL_SECONDS = 120

        store = build_session_store()

        assert isinstance(store, RedisSessionStore)
        assert store.redis_url == "redis://cache:6379/1"

    def test_singleton(self):
        assert get_session_store() is get_session_store()
