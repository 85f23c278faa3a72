"""
Redis connection helpers.

Used only by the redis broadcast backend to relay signal events between
processes.
"""

from redis.asyncio import Redis as AsyncRedis


def create_async_redis(url: str, max_connections: int = 50) -> AsyncRedis:
    """Create an async Redis client with string responses."""
    return AsyncRedis.from_url(
        url,
        decode_responses=True,
        max_connections=max_connections,
    )
