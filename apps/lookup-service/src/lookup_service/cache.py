from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from redis.exceptions import RedisError

from service_pipeline.core.models import GeoPoint, ServiceType

logger = logging.getLogger(__name__)

SEARCH_PREFIX = "search:"
UNAVAILABLE_ERRORS = (RedisError, OSError)


class CacheStore(ABC):
    """Key/value store for JSON-serialisable search payloads with per-entry expiry."""

    @abstractmethod
    async def read(self, key: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def write(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def drop_prefix(self, prefix: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class RedisCacheClient(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, seconds: int, value: str) -> bool: ...

    async def scan_keys(self, pattern: str) -> list[str]: ...

    async def delete(self, *keys: str) -> int: ...

    async def close(self) -> None: ...


class InMemoryCacheStore(CacheStore):
    """Process-local store; the oldest entry is evicted once ``max_entries`` is reached."""

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, dict[str, Any]]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def read(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def write(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (self._clock() + ttl_seconds, value)

    async def drop_prefix(self, prefix: str) -> int:
        stale = [key for key in self._entries if key.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        return len(stale)


class RedisCacheStore(CacheStore):
    def __init__(self, client: RedisCacheClient) -> None:
        self._client = client

    async def read(self, key: str) -> dict[str, Any] | None:
        raw = await self._client.get(key)
        return json.loads(raw) if raw else None

    async def write(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        await self._client.setex(key, ttl_seconds, json.dumps(value, separators=(",", ":")))

    async def drop_prefix(self, prefix: str) -> int:
        keys = await self._client.scan_keys(f"{prefix}*")
        return await self._client.delete(*keys) if keys else 0

    async def close(self) -> None:
        await self._client.close()


def search_cache_key(service_type: ServiceType, country: str, location: GeoPoint | None) -> str:
    # 3 decimals is roughly a 110 m grid
    point = f"{location.lat:.3f}:{location.lng:.3f}" if location else "*"
    return f"{SEARCH_PREFIX}{service_type.value}:{country.strip().lower()}:{point}"


@dataclass(frozen=True)
class CachedSearch:
    data: dict[str, Any]
    count: int


class SearchCache:
    """Caches successful aggregated searches per type, country and rounded location.

    An unreachable store never fails the caller: reads become misses and
    writes or invalidations are skipped.
    """

    def __init__(self, store: CacheStore, ttl_seconds: int = 30) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def lookup(self, service_type: ServiceType, country: str, location: GeoPoint | None) -> CachedSearch | None:
        try:
            payload = await self.store.read(search_cache_key(service_type, country, location))
        except UNAVAILABLE_ERRORS as exc:
            logger.warning("search_cache_unavailable", extra={"operation": "lookup", "error": str(exc)})
            return None
        if payload is None:
            return None
        return CachedSearch(data=payload["data"], count=payload["count"])

    async def remember(
        self,
        service_type: ServiceType,
        country: str,
        location: GeoPoint | None,
        data: dict[str, Any],
        count: int,
    ) -> None:
        key = search_cache_key(service_type, country, location)
        try:
            await self.store.write(key, {"data": data, "count": count}, self.ttl_seconds)
        except UNAVAILABLE_ERRORS as exc:
            logger.warning("search_cache_unavailable", extra={"operation": "remember", "error": str(exc)})

    async def invalidate(self) -> int:
        try:
            return await self.store.drop_prefix(SEARCH_PREFIX)
        except UNAVAILABLE_ERRORS as exc:
            logger.warning("search_cache_unavailable", extra={"operation": "invalidate", "error": str(exc)})
            return 0

    async def close(self) -> None:
        await self.store.close()
