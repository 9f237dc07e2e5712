"""
Redis helper utilities for the resolution cache.

The resolution engine and the mutation gateway run on synchronous SQLAlchemy
sessions, so the cache uses the blocking redis-py client. This module is the
central place that builds the shared client and offers small JSON helpers so
that cache code does not deal with raw payloads.
"""

from __future__ import annotations

import json
import threading
from typing import Any

from fastapi.encoders import jsonable_encoder
from redis import Redis

from .settings import settings

_client_lock = threading.Lock()
_client: Redis | None = None


def _create_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def get_redis_client() -> Redis:
    """Return the process-wide Redis client (connection pool is thread-safe)."""

    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = _create_client()
    return _client


def close_redis_client() -> None:
    """Close and forget the shared client (used on application shutdown)."""

    global _client
    with _client_lock:
        client, _client = _client, None
    if client is not None:
        client.close()


def redis_get_json(redis: Redis, key: str) -> Any | None:
    """
    Load a JSON value from Redis.
    Returns None on missing key or malformed payload.
    """
    raw = redis.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def redis_set_json(
    redis: Redis, key: str, value: Any, *, ttl_seconds: int | None = None
) -> None:
    """
    Store a JSON-serialisable value under the given key with optional TTL.
    """
    data = json.dumps(jsonable_encoder(value), ensure_ascii=False)
    if ttl_seconds is not None:
        redis.set(key, data, ex=ttl_seconds)
    else:
        redis.set(key, data)


__all__ = [
    "close_redis_client",
    "get_redis_client",
    "redis_get_json",
    "redis_set_json",
]
