# 📄 File: billing_engine/shared/config/redis.py
#
# 🧭 Purpose (Layman Explanation):
# Configuration for the Redis server the billing engine uses to make sure only one
# copy of the engine sweeps expiring or renewing subscriptions at a time.
#
# 🧪 Purpose (Technical Summary):
# Redis connection pooling with environment-specific settings, a health check, and a
# non-blocking distributed lock used around scheduler sweeps in multi-instance deployments.
#
# 🔗 Dependencies:
# - redis (redis.asyncio)
# - billing_engine.shared.config.settings
#
# 🔄 Connected Modules / Calls From:
# - billing_engine.main (startup/shutdown)
# - background_jobs/scheduler.py (sweep lock)
# - api/v1/health.py (health check)

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import redis.asyncio as redis
from redis.asyncio import ConnectionPool, Redis

from .settings import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# REDIS CONFIGURATION CLASS
# =============================================================================

class RedisConfig:
    """Redis configuration class with connection management."""

    def __init__(self):
        self.settings = get_settings()
        self._connection_pool: Optional[ConnectionPool] = None
        self._redis_client: Optional[Redis] = None

    @property
    def redis_url(self) -> str:
        return self.settings.redis_url

    @property
    def connection_kwargs(self) -> Dict[str, Any]:
        """Get Redis connection configuration."""
        base_config: Dict[str, Any] = {
            "encoding": "utf-8",
            "decode_responses": True,
            "retry_on_timeout": True,
            "health_check_interval": 30,
        }

        if self.settings.is_production:
            base_config.update({
                "socket_timeout": 5.0,
                "socket_connect_timeout": 5.0,
                "socket_keepalive": True,
            })
        else:
            base_config.update({
                "socket_timeout": 10.0,
                "socket_connect_timeout": 10.0,
            })

        return base_config

    def create_connection_pool(self) -> ConnectionPool:
        if self._connection_pool is None:
            self._connection_pool = ConnectionPool.from_url(
                self.redis_url,
                max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                **self.connection_kwargs
            )
        return self._connection_pool

    def create_redis_client(self) -> Redis:
        """Create Redis client with connection pool."""
        if self._redis_client is None:
            self._redis_client = Redis(connection_pool=self.create_connection_pool())
        return self._redis_client

    async def close_connections(self):
        """Close Redis connections and cleanup."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None

        if self._connection_pool:
            await self._connection_pool.disconnect()
            self._connection_pool = None


# Global Redis configuration instance
redis_config = RedisConfig()


def get_redis_client() -> Redis:
    """Get Redis client instance."""
    return redis_config.create_redis_client()


async def close_redis() -> None:
    await redis_config.close_connections()
    logger.info("Redis connections closed")


async def check_redis_health() -> Dict[str, Any]:
    """Check Redis connectivity."""
    try:
        client = get_redis_client()
        ping_result = await client.ping()
        return {"status": "healthy", "ping": ping_result}
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "type": type(e).__name__,
        }


# =============================================================================
# DISTRIBUTED LOCKING
# =============================================================================

@asynccontextmanager
async def sweep_lock(name: str, client: Optional[Redis] = None) -> AsyncGenerator[bool, None]:
    """
    Try to take a cluster-wide lock for a scheduler sweep without waiting.

    Yields True when this process owns the lock. When the distributed lock is
    disabled in settings the sweep always runs.

    Example:
        async with sweep_lock("process_expired_subscriptions") as acquired:
            if not acquired:
                return {"skipped": True}
    """
    settings = get_settings()
    if not settings.SCHEDULER_DISTRIBUTED_LOCK:
        yield True
        return

    client = client or get_redis_client()
    lock = client.lock(
        f"billing:sweep-lock:{name}",
        timeout=settings.SCHEDULER_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    acquired = await lock.acquire()
    if not acquired:
        logger.info(f"Sweep '{name}' is running on another instance, skipping")
    try:
        yield bool(acquired)
    finally:
        if acquired:
            try:
                await lock.release()
            except redis.LockError as e:
                logger.warning(f"Sweep lock '{name}' expired before release: {e}")
