from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from devkit.config import ServiceSettings

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


def _default_client(url: str, socket_timeout_seconds: float) -> Any:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=socket_timeout_seconds,
        socket_timeout=socket_timeout_seconds,
        health_check_interval=30,
    )


class AsyncRedisManager:
    """Lazily connected redis client that drops and rebuilds the connection on network errors."""

    def __init__(
        self,
        url: str,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.2,
        socket_timeout_seconds: float = 5.0,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self._url = url
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._client_factory = client_factory or (lambda value: _default_client(value, socket_timeout_seconds))
        self._client: Any | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "AsyncRedisManager":
        if not settings.REDIS_URL:
            raise ValueError("REDIS_URL is not configured")
        return cls(settings.REDIS_URL)

    async def _get_client(self) -> Any:
        async with self._lock:
            if self._client is None:
                self._client = self._client_factory(self._url)
            return self._client

    async def _drop_client(self) -> None:
        async with self._lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except RETRYABLE_ERRORS:
                logger.warning("redis_close_failed", exc_info=True)

    async def _call(self, operation: str, *args: Any) -> Any:
        attempt = 0
        while True:
            client = await self._get_client()
            try:
                return await getattr(client, operation)(*args)
            except RETRYABLE_ERRORS as exc:
                attempt += 1
                if attempt >= self._max_retries:
                    raise
                delay = self._base_delay_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "redis_command_retry",
                    extra={"operation": operation, "attempt": attempt, "error": str(exc)},
                )
                await self._drop_client()
                await asyncio.sleep(delay)

    async def get(self, key: str) -> str | None:
        return await self._call("get", key)

    async def setex(self, key: str, seconds: int, value: str) -> bool:
        return await self._call("setex", key, seconds, value)

    async def scan_keys(self, pattern: str, batch_size: int = 200) -> list[str]:
        """Collect keys matching ``pattern`` using incremental SCAN."""
        found: list[str] = []
        cursor = 0
        while True:
            cursor, batch = await self._call("scan", cursor, pattern, batch_size)
            found.extend(batch)
            if int(cursor) == 0:
                return found

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._call("delete", *keys)

    async def ping(self) -> bool:
        return bool(await self._call("ping"))

    async def close(self) -> None:
        await self._drop_client()


def create_redis_client(url: str | None) -> AsyncRedisManager | None:
    if not url:
        return None
    return AsyncRedisManager(url)
