"""Valkey (Redis-compatible) client for cross-process coordination."""

import redis.asyncio as redis

from solarcrm.config import get_settings

settings = get_settings()

# Global connection pool
_pool: redis.ConnectionPool | None = None


async def get_valkey() -> redis.Redis:
    """Get Valkey client with connection pooling."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.VALKEY_URL,
            decode_responses=True,
        )
    return redis.Redis(connection_pool=_pool)


async def close_valkey():
    """Close Valkey connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


class SweepLock:
    """Short-lived mutual exclusion between retry sweepers of different processes."""

    KEY = "webhook:sweep_lock"

    # Delete only if we still own the lock
    _RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    @classmethod
    async def acquire(cls, token: str, ttl_seconds: int) -> bool:
        """Take the lock for ``ttl_seconds``. Returns False if someone else holds it."""
        client = await get_valkey()
        return bool(await client.set(cls.KEY, token, nx=True, ex=ttl_seconds))

    @classmethod
    async def release(cls, token: str) -> None:
        client = await get_valkey()
        await client.eval(cls._RELEASE_SCRIPT, 1, cls.KEY, token)
