import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from devkit.config import ServiceSettings
from devkit.redis import AsyncRedisManager, create_redis_client


class FakeClient:
    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or RedisConnectionError("connection reset")
        self.closed = False
        self.values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        if self.failures:
            self.failures -= 1
            raise self.error
        return self.values.get(key)

    async def setex(self, key: str, _seconds: int, value: str) -> bool:
        self.values[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    async def aclose(self) -> None:
        self.closed = True


def test_create_redis_client_none() -> None:
    assert create_redis_client(None) is None
    assert create_redis_client("") is None


def test_create_redis_client_returns_manager() -> None:
    assert isinstance(create_redis_client("redis://example:6379/0"), AsyncRedisManager)


def test_from_settings_requires_url() -> None:
    assert isinstance(AsyncRedisManager.from_settings(ServiceSettings(REDIS_URL="redis://cache:6379/1")), AsyncRedisManager)
    with pytest.raises(ValueError):
        AsyncRedisManager.from_settings(ServiceSettings(REDIS_URL=None))


@pytest.mark.asyncio
async def test_manager_rebuilds_client_after_connection_error() -> None:
    created: list[FakeClient] = []

    def factory(_url: str) -> FakeClient:
        client = FakeClient(failures=1 if not created else 0)
        created.append(client)
        return client

    manager = AsyncRedisManager("redis://example:6379/0", base_delay_seconds=0.0, client_factory=factory)
    value = await manager.get("search:clinic:jordan:*")

    assert value is None
    assert len(created) == 2
    assert created[0].closed is True


@pytest.mark.asyncio
async def test_manager_gives_up_after_max_retries() -> None:
    manager = AsyncRedisManager(
        "redis://example:6379/0",
        max_retries=2,
        base_delay_seconds=0.0,
        client_factory=lambda _url: FakeClient(failures=5),
    )

    with pytest.raises(RedisConnectionError):
        await manager.get("k")


@pytest.mark.asyncio
async def test_manager_does_not_retry_command_errors() -> None:
    created: list[FakeClient] = []

    def factory(_url: str) -> FakeClient:
        client = FakeClient(failures=1, error=ResponseError("WRONGTYPE"))
        created.append(client)
        return client

    manager = AsyncRedisManager("redis://example:6379/0", base_delay_seconds=0.0, client_factory=factory)

    with pytest.raises(ResponseError):
        await manager.get("k")
    assert len(created) == 1


@pytest.mark.asyncio
async def test_delete_without_keys_is_a_no_op() -> None:
    manager = AsyncRedisManager("redis://example:6379/0", client_factory=lambda _url: FakeClient())

    assert await manager.delete() == 0
    await manager.setex("a", 30, "1")
    assert await manager.delete("a", "b") == 1


@pytest.mark.asyncio
async def test_scan_keys_follows_cursor_until_exhausted() -> None:
    class PagedClient(FakeClient):
        def __init__(self) -> None:
            super().__init__()
            self.cursors: list[int] = []

        async def scan(self, cursor: int, match: str, count: int):
            self.cursors.append(cursor)
            pages = {0: (7, ["search:a"]), 7: (0, ["search:b", "search:c"])}
            return pages[cursor]

    client = PagedClient()
    manager = AsyncRedisManager("redis://example:6379/0", client_factory=lambda _url: client)

    assert await manager.scan_keys("search:*") == ["search:a", "search:b", "search:c"]
    assert client.cursors == [0, 7]
