"""
Key-value persistence for completed sessions.

Values are JSON-serialized on write and parsed on read; a value that no
longer parses surfaces as MalformedPersistedStateError.
"""
import json
import logging
from typing import Any, Dict, Optional, Protocol

import redis
from redis.exceptions import RedisError

from .models import MalformedPersistedStateError

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "voidbloom:"
REDIS_CONNECT_TIMEOUT = 1
REDIS_SOCKET_TIMEOUT = 2


def create_redis_client(url: str) -> redis.Redis:
    """Builds a client that fails fast instead of hanging when Redis is unreachable."""
    logger.info(f"Creating Redis session store client for {url}")
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=REDIS_CONNECT_TIMEOUT,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
    )


class SessionStore(Protocol):
    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def _decode(key: str, raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPersistedStateError(f"Stored value for '{key}' is not valid JSON: {e}")


class InMemorySessionStore:
    """Dict-backed store holding JSON text, so it behaves like the persistent adapters."""

    def __init__(self, key_prefix: str = ""):
        self.key_prefix = key_prefix
        self.data: Dict[str, str] = {}

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Any:
        return _decode(key, self.data.get(self._key(key)))

    def set(self, key: str, value: Any) -> None:
        self.data[self._key(key)] = json.dumps(value)

    def delete(self, key: str) -> None:
        self.data.pop(self._key(key), None)

    def __len__(self) -> int:
        return len(self.data)


class RedisSessionStore:
    """
    Redis adapter. Every key is namespaced with ``key_prefix``.

    The client should be created with ``decode_responses=True``; bytes are
    decoded here as well in case it was not.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> "RedisSessionStore":
        return cls(create_redis_client(url), key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Any:
        full_key = self._key(key)
        try:
            raw = self.client.get(full_key)
        except RedisError as e:
            logger.error(f"Redis GET failed for {full_key}: {e}")
            raise
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return _decode(full_key, raw)

    def set(self, key: str, value: Any) -> None:
        full_key = self._key(key)
        try:
            self.client.set(full_key, json.dumps(value))
        except RedisError as e:
            logger.error(f"Redis SET failed for {full_key}: {e}")
            raise

    def delete(self, key: str) -> None:
        full_key = self._key(key)
        try:
            self.client.delete(full_key)
        except RedisError as e:
            logger.error(f"Redis DELETE failed for {full_key}: {e}")
            raise
