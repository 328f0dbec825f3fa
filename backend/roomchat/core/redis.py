"""Async Redis client shared by the stores and the chat coordinator.

All shared chat state (presence, membership, messages, rooms) lives in
Redis. Process-local state never leaves the coordinator.
"""
import logging
from typing import Optional

from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger(__name__)

_async_redis_client: Optional[AsyncRedis] = None


async def get_async_redis_client(redis_url: Optional[str] = None) -> AsyncRedis:
    """Get or create the process-wide async Redis client.

    Args:
        redis_url: Connection URL. Only used when the client is first created.

    Returns:
        AsyncRedis: Client with ``decode_responses`` enabled, so every
            command returns ``str`` rather than ``bytes``.
    """
    global _async_redis_client

    if _async_redis_client is None:
        _async_redis_client = AsyncRedis.from_url(
            redis_url or "redis://localhost:6379/0",
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("[Redis] Async client initialized")

    return _async_redis_client


async def close_async_redis_client() -> None:
    """Close the async Redis client gracefully."""
    global _async_redis_client

    if _async_redis_client is not None:
        await _async_redis_client.aclose()
        _async_redis_client = None
        logger.info("[Redis] Async client closed")
