"""
Redis client singleton and scheduler lease.

The reminder schedulers keep an in-process re-entrancy guard. When more than
one worker process is deployed, each firing additionally takes a
time-bounded Redis lock so only one instance sends reminders per firing.

Redis Key Patterns:
    - Scheduler lease: reminders:lease:{worker_name}
"""

import logging
from functools import lru_cache

import redis.asyncio as redis
from redis import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from shared.config import get_settings

LEASE_KEY_PREFIX = "reminders:lease"

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Get cached Redis client instance.

    Returns:
        Redis async client configured with connection pool and retry logic
    """
    settings = get_settings()

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=10,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        logger.info(f"Redis client initialized: {settings.REDIS_URL}")
        return client

    except RedisConnectionError as e:
        logger.error(f"Redis connection failed: {e}", exc_info=True)
        raise


async def close_redis_client() -> None:
    """Close Redis connection gracefully (process shutdown)."""
    try:
        client = get_redis_client()
        await client.aclose()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")


class SchedulerLease:
    """
    Time-bounded lock around a single scheduler firing.

    acquire() never blocks: if another instance holds the lease the firing
    is skipped. The TTL bounds how long a crashed holder can block others.
    """

    def __init__(self, client: "redis.Redis[str] | None" = None, ttl_seconds: int | None = None):
        settings = get_settings()
        self._client = client or get_redis_client()
        self._ttl = ttl_seconds or settings.SCHEDULER_LEASE_TTL_SECONDS
        self._locks: dict[str, object] = {}

    async def acquire(self, name: str) -> bool:
        lock = self._client.lock(
            f"{LEASE_KEY_PREFIX}:{name}", timeout=self._ttl, blocking=False
        )
        try:
            acquired = await lock.acquire()
        except RedisConnectionError as e:
            logger.error(f"Redis unavailable, lease '{name}' not acquired: {e}")
            return False

        if acquired:
            self._locks[name] = lock
            logger.debug(f"Lease acquired: {name}")
        else:
            logger.info(f"Lease '{name}' held by another instance")
        return bool(acquired)

    async def release(self, name: str) -> None:
        lock = self._locks.pop(name, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockError:
            # TTL expired mid-firing; another instance may already own it
            logger.warning(f"Lease '{name}' expired before release")
        except RedisConnectionError as e:
            logger.warning(f"Could not release lease '{name}': {e}")
