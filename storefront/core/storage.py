"""Durable key-value storage for the persisted cart and wishlist.

Values are JSON documents. ``RedisStorage`` keeps them in Redis with a TTL
and drops to a process-local dict when Redis is unreachable, so a cart
keeps working through a cache outage.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

import redis

from storefront.core.constants import STORAGE_EXPIRY_SECONDS

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


def _decode(raw: Any, key: str) -> Any | None:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.warning("Discarding unparseable stored value for %s: %s", key, exc)
        return None


class MemoryStorage:
    """In-memory storage; values are stored serialized, like the Redis backend."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def load(self, key: str) -> Any | None:
        return _decode(self._data.get(key), key)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def raw(self, key: str) -> str | None:
        return self._data.get(key)

    def put_raw(self, key: str, raw: str) -> None:
        self._data[key] = raw


class RedisStorage:
    """Storage persisted in Redis with a TTL refreshed on every write."""

    def __init__(self, redis_url: str | None = None, expiry_seconds: int = STORAGE_EXPIRY_SECONDS):
        self._redis_url = redis_url or os.getenv("REDIS_URL")
        self._expiry_seconds = expiry_seconds
        self._memory = MemoryStorage()
        self._client = self._init_client()

    @property
    def is_memory_fallback(self) -> bool:
        return self._client is None

    def _switch_to_memory_fallback(self, reason: Exception | str) -> None:
        logger.warning("Redis storage fallback to memory mode: %s", reason)
        self._client = None

    def _init_client(self):
        if not self._redis_url:
            logger.warning("REDIS_URL is not set; storage uses in-memory fallback")
            return None

        try:
            client = redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            client.ping()
            logger.info("Redis storage enabled")
            return client
        except redis.RedisError as exc:
            logger.warning("Redis storage init failed, fallback to in-memory: %s", exc)
            return None

    def load(self, key: str) -> Any | None:
        if not self._client:
            return self._memory.load(key)
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            self._switch_to_memory_fallback(exc)
            return self._memory.load(key)
        return _decode(raw, key)

    def save(self, key: str, value: Any) -> None:
        if self._client:
            serialized = json.dumps(value, ensure_ascii=False)
            try:
                self._client.setex(key, self._expiry_seconds, serialized)
                return
            except redis.RedisError as exc:
                self._switch_to_memory_fallback(exc)
        self._memory.save(key, value)

    def delete(self, key: str) -> None:
        if self._client:
            try:
                self._client.delete(key)
                return
            except redis.RedisError as exc:
                self._switch_to_memory_fallback(exc)
        self._memory.delete(key)


def create_storage(redis_url: str | None = None) -> Storage:
    """Redis when configured, memory otherwise."""
    if redis_url:
        return RedisStorage(redis_url=redis_url)
    return MemoryStorage()
