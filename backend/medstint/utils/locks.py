"""Per-key mutual exclusion for completion finalization.

Two managers with the same interface:
  LocalLockManager → asyncio.Lock per key (single process, tests)
  RedisLockManager → SET NX PX with a random token, released by a
                     compare-and-delete script so a lock that outlived
                     its TTL is never freed by the wrong holder

Usage:
    async with locks.hold(f"finalize:{session_id}"):
        ...
"""

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager

import redis.asyncio as redis

from medstint.config import settings
from medstint.utils.cache import get_redis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockNotAcquired(Exception):
    """Another holder kept the lock for the whole wait."""


class LockUnavailable(LockNotAcquired):
    """The lock backend itself could not be reached."""


class LocalLockManager:
    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.lock_timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout or self.timeout)
            except asyncio.TimeoutError as exc:
                raise LockNotAcquired(key) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            # Holders plus waiters; the entry goes once nobody needs it
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class RedisLockManager:
    poll_interval = 0.1

    def __init__(self, timeout: float | None = None, client: redis.Redis | None = None):
        self.timeout = timeout if timeout is not None else settings.lock_timeout_seconds
        self._client = client

    async def _redis(self) -> redis.Redis:
        return self._client or await get_redis()

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None):
        wait = timeout or self.timeout
        token = secrets.token_hex(16)
        lock_key = f"lock:{key}"
        try:
            client = await self._redis()
            loop = asyncio.get_running_loop()
            deadline = loop.time() + wait
            # TTL = wait time so a crashed holder cannot wedge the key
            while not await client.set(lock_key, token, nx=True, px=int(wait * 1000)):
                if loop.time() >= deadline:
                    raise LockNotAcquired(key)
                await asyncio.sleep(self.poll_interval)
        except redis.RedisError as exc:
            logger.error("Lock backend unavailable for %s: %s", key, exc)
            raise LockUnavailable(key) from exc

        try:
            yield
        finally:
            try:
                await client.eval(_RELEASE_SCRIPT, 1, lock_key, token)
            except redis.RedisError as exc:
                logger.warning("Failed to release lock %s (expires on TTL): %s", key, exc)


_manager = None


def get_lock_manager():
    """Process-wide lock manager chosen by LOCK_BACKEND."""
    global _manager
    if _manager is None:
        if settings.lock_backend == "redis":
            _manager = RedisLockManager()
        else:
            _manager = LocalLockManager()
    return _manager
