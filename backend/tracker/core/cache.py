"""
Key/value cache used by tenant lookups.

Backends store strings; `CacheService` owns JSON encoding and the cache
metrics. Whether a backend supports tag invalidation is decided when it
is built and never probed again.
"""

from __future__ import annotations

import json
import logging
import os
import time
from threading import Lock
from typing import Any, Iterable, NamedTuple, Protocol

import redis
from fastapi.encoders import jsonable_encoder

from tracker.core.config import settings
from tracker.core.metrics import record_cache_hit, record_cache_miss, record_cache_set


logger = logging.getLogger(__name__)

DISABLED_BACKEND_NAMES = frozenset({"none", "disabled", "off"})


class CacheBackend(Protocol):
    backend_name: str
    supports_tags: bool

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl: int | None = None, tags: Iterable[str] | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def flush_tags(self, tags: Iterable[str]) -> int: ...

    def clear(self) -> None: ...


class _Slot(NamedTuple):
    value: str
    deadline: float | None


class InMemoryCache:
    """
    Per-process cache. Build with `taggable=False` to get a backend that
    only knows TTL expiry.
    """

    backend_name = "memory"

    def __init__(self, *, taggable: bool = True) -> None:
        self.supports_tags = taggable
        self._slots: dict[str, _Slot] = {}
        self._members: dict[str, set[str]] = {}
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                return None
            if slot.deadline is not None and slot.deadline < time.monotonic():
                del self._slots[key]
                return None
            return slot.value

    def set(self, key: str, value: str, ttl: int | None = None, tags: Iterable[str] | None = None) -> None:
        tags = list(tags or ())
        if tags and not self.supports_tags:
            raise ValueError("tags given to a cache built without tag support")
        deadline = time.monotonic() + ttl if ttl and ttl > 0 else None
        with self._lock:
            self._slots[key] = _Slot(value, deadline)
            for tag in tags:
                self._members.setdefault(tag, set()).add(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._slots.pop(key, None)

    def flush_tags(self, tags: Iterable[str]) -> int:
        with self._lock:
            keys = set().union(*(self._members.pop(tag, set()) for tag in tags))
            dropped = [key for key in keys if self._slots.pop(key, None) is not None]
        return len(dropped)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()
            self._members.clear()

    def count_keys(self) -> int:
        return len(self._slots)


class NullCache:
    """Stores nothing. Used when caching is switched off and under pytest."""

    backend_name = "none"
    supports_tags = False

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, ttl: int | None = None, tags: Iterable[str] | None = None) -> None:
        pass

    def delete(self, key: str) -> None:
        pass

    def flush_tags(self, tags: Iterable[str]) -> int:
        return 0

    def clear(self) -> None:
        pass


class RedisCache:
    """
    Shared cache for multi-worker deployments. Every key lives under the
    configured namespace; a tag is a Redis set holding its member keys.
    """

    backend_name = "redis"
    supports_tags = True

    def __init__(self, url: str, *, namespace: str | None = None) -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._prefix = f"{namespace or settings.CACHE_NAMESPACE}:"

    def _tag(self, tag: str) -> str:
        return f"{self._prefix}tag:{tag}"

    def get(self, key: str) -> str | None:
        return self._client.get(self._prefix + key)

    def set(self, key: str, value: str, ttl: int | None = None, tags: Iterable[str] | None = None) -> None:
        full_key = self._prefix + key
        with self._client.pipeline() as pipe:
            pipe.set(full_key, value, ex=ttl if ttl and ttl > 0 else None)
            for tag in tags or ():
                pipe.sadd(self._tag(tag), full_key)
            pipe.execute()

    def delete(self, key: str) -> None:
        self._client.delete(self._prefix + key)

    def flush_tags(self, tags: Iterable[str]) -> int:
        dropped = 0
        for tag in tags:
            members = self._client.smembers(self._tag(tag))
            if members:
                dropped += self._client.delete(*members)
            self._client.delete(self._tag(tag))
        return dropped

    def clear(self) -> None:
        for key in self._client.scan_iter(match=f"{self._prefix}*"):
            self._client.delete(key)


def configured_backend_name() -> str:
    explicit = os.getenv("CACHE_BACKEND")
    # Tests get no cache unless they ask for one.
    if explicit is None and os.getenv("PYTEST_CURRENT_TEST"):
        return "none"
    return (explicit or settings.CACHE_BACKEND or "memory").lower()


def build_cache_backend(name: str | None = None) -> CacheBackend:
    name = (name or configured_backend_name()).lower()
    if name in DISABLED_BACKEND_NAMES:
        return NullCache()
    if name != "redis":
        return InMemoryCache()
    if not settings.REDIS_URL:
        logger.warning("cache.redis_url_missing", extra={"fallback": "memory"})
        return InMemoryCache()
    try:
        return RedisCache(settings.REDIS_URL)
    except redis.RedisError:
        logger.warning("cache.redis_unavailable", exc_info=True, extra={"fallback": "memory"})
        return InMemoryCache()


class CacheService:
    def __init__(self, *, backend: CacheBackend | None = None, default_ttl: int | None = None) -> None:
        self.backend = backend or build_cache_backend()
        self.default_ttl = settings.CACHE_DEFAULT_TTL_SECONDS if default_ttl is None else default_ttl

    @property
    def supports_tags(self) -> bool:
        return self.backend.supports_tags

    def get(self, key: str, *, cache_name: str = "default") -> Any | None:
        raw = self.backend.get(key)
        value = None
        if raw is not None:
            try:
                value = json.loads(raw)
            except ValueError:
                value = None
        if value is None:
            record_cache_miss(cache_name)
        else:
            record_cache_hit(cache_name)
        return value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: int | None = None,
        tags: Iterable[str] | None = None,
        cache_name: str = "default",
    ) -> bool:
        try:
            raw = json.dumps(jsonable_encoder(value), sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError):
            logger.debug("cache.unserializable", extra={"cache_key": key})
            return False
        # Tags are dropped, not rejected, on backends without tag support.
        tags = list(tags or ()) if self.supports_tags else []
        self.backend.set(key, raw, ttl=self.default_ttl if ttl is None else ttl, tags=tags or None)
        record_cache_set(cache_name)
        return True

    def delete(self, key: str) -> None:
        self.backend.delete(key)

    def flush_tags(self, tags: Iterable[str]) -> int:
        return self.backend.flush_tags(tags) if self.supports_tags else 0

    def clear(self) -> None:
        self.backend.clear()


_SERVICE: CacheService | None = None


def get_cache_service() -> CacheService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = CacheService()
    return _SERVICE


def reset_cache_service() -> None:
    global _SERVICE
    _SERVICE = None
