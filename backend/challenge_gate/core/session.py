"""Login session scratch storage.

Every login attempt gets its own session id (carried in the login token), so
two concurrent logins of the same account never see each other's state.
Values must be JSON-serializable.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as redis

from challenge_gate.config import settings

logger = logging.getLogger(__name__)

# Module-level singleton (built lazily on first request)
_store: Optional["SessionStore"] = None


class SessionStore(ABC):
    """Keyed scratch storage, partitioned by login session id."""

    @abstractmethod
    async def get(self, session_id: str, key: str, default: Any = None) -> Any:
        """Return the stored value or ``default``."""

    @abstractmethod
    async def set(self, session_id: str, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    async def remove(self, session_id: str, key: str) -> None:
        """Remove ``key``. Missing keys are ignored."""

    @abstractmethod
    async def exists(self, session_id: str, key: str) -> bool:
        """Return True if ``key`` is set."""

    @abstractmethod
    async def clear(self, session_id: str) -> None:
        """Drop the whole login session."""

    def scoped(self, session_id: str) -> "LoginSession":
        """Bind the store to one login session."""
        return LoginSession(self, session_id)


class LoginSession:
    """Session store view for a single login attempt."""

    def __init__(self, store: SessionStore, session_id: str) -> None:
        self._store = store
        self.session_id = session_id

    async def get(self, key: str, default: Any = None) -> Any:
        return await self._store.get(self.session_id, key, default)

    async def set(self, key: str, value: Any) -> None:
        await self._store.set(self.session_id, key, value)

    async def remove(self, key: str) -> None:
        await self._store.remove(self.session_id, key)

    async def exists(self, key: str) -> bool:
        return await self._store.exists(self.session_id, key)

    async def clear(self) -> None:
        await self._store.clear(self.session_id)


class MemorySessionStore(SessionStore):
    """
    In-process session store with sliding TTL.

    Suitable for development and single-worker deployments. Use
    RedisSessionStore when running several workers.
    """

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, tuple[float, dict[str, Any]]] = {}
        self._sweep_interval = min(ttl_seconds, 60)
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        """Drop every expired session, at most once per sweep interval."""
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval
        expired = [sid for sid, (expires, _) in self._sessions.items() if expires <= now]
        for sid in expired:
            del self._sessions[sid]

    def _bucket(self, session_id: str, create: bool = False) -> Optional[dict[str, Any]]:
        now = time.monotonic()
        entry = self._sessions.get(session_id)
        if entry is not None and entry[0] <= now:
            del self._sessions[session_id]
            entry = None
        if entry is None:
            if not create:
                return None
            self._sweep(now)
            entry = (now + self.ttl_seconds, {})
        # Refresh expiry on every touch
        self._sessions[session_id] = (now + self.ttl_seconds, entry[1])
        return entry[1]

    async def get(self, session_id: str, key: str, default: Any = None) -> Any:
        bucket = self._bucket(session_id)
        if bucket is None:
            return default
        return bucket.get(key, default)

    async def set(self, session_id: str, key: str, value: Any) -> None:
        # Round-trip through JSON so both backends accept the same values
        self._bucket(session_id, create=True)[key] = json.loads(json.dumps(value))

    async def remove(self, session_id: str, key: str) -> None:
        bucket = self._bucket(session_id)
        if bucket is not None:
            bucket.pop(key, None)

    async def exists(self, session_id: str, key: str) -> bool:
        bucket = self._bucket(session_id)
        return bucket is not None and key in bucket

    async def clear(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class RedisSessionStore(SessionStore):
    """Session store backed by one Redis hash per login session."""

    KEY_PREFIX = "login_session:"

    def __init__(self, redis_url: str, ttl_seconds: int = 3600) -> None:
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.redis_client: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )
        return self.redis_client

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def get(self, session_id: str, key: str, default: Any = None) -> Any:
        client = await self.get_redis()
        raw = await client.hget(self._key(session_id), key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, session_id: str, key: str, value: Any) -> None:
        client = await self.get_redis()
        name = self._key(session_id)
        await client.hset(name, key, json.dumps(value))
        await client.expire(name, self.ttl_seconds)

    async def remove(self, session_id: str, key: str) -> None:
        client = await self.get_redis()
        await client.hdel(self._key(session_id), key)

    async def exists(self, session_id: str, key: str) -> bool:
        client = await self.get_redis()
        return bool(await client.hexists(self._key(session_id), key))

    async def clear(self, session_id: str) -> None:
        client = await self.get_redis()
        await client.delete(self._key(session_id))


def build_session_store() -> SessionStore:
    """Construct the session store selected by SESSION_BACKEND."""
    if settings.SESSION_BACKEND == "redis":
        logger.info("Session store: redis")
        return RedisSessionStore(settings.REDIS_URL, ttl_seconds=settings.SESSION_TTL_SECONDS)

    if settings.ENVIRONMENT == "production":
        logger.warning(
            "Session store: in-memory backend in production, login state is not shared between workers"
        )
    return MemorySessionStore(ttl_seconds=settings.SESSION_TTL_SECONDS)


def get_session_store() -> SessionStore:
    """Return the singleton store, building it on first call."""
    global _store
    if _store is None:
        _store = build_session_store()
    return _store


def reset_session_store() -> None:
    """Reset the singleton store (used in tests to re-read config)."""
    global _store
    _store = None
