"""
Redis helpers for the hot tier.

The hot counter store receives an already-constructed client; this module is
the one place that knows how to build it from settings, so the FastAPI
lifespan and scripts do not duplicate that logic.
"""

from __future__ import annotations

from redis.asyncio import Redis

from .settings import settings


def create_redis_client(url: str | None = None) -> Redis:
    """
    Build an asyncio Redis client with string responses.

    The caller owns the client and must `await client.aclose()` on shutdown.
    """
    return Redis.from_url(url or settings.redis_url, decode_responses=True)


__all__ = ["create_redis_client"]
