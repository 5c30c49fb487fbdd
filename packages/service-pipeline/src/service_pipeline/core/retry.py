import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from service_pipeline.core.exceptions import FetchError

T = TypeVar("T")


def compute_backoff_delay(
    attempt: int,
    base_delay_seconds: float,
    max_delay_seconds: float,
    jitter_seconds: float = 0.0,
    rand: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay after the 0-indexed ``attempt``: ``min(base * 2**attempt + jitter, cap)``."""
    jitter = rand(0.0, jitter_seconds) if jitter_seconds > 0 else 0.0
    return min(base_delay_seconds * (2**attempt) + jitter, max_delay_seconds)


async def with_exponential_backoff(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    base_delay_seconds: float = 0.1,
    max_delay_seconds: float = 5.0,
    jitter_seconds: float = 0.0,
    on_retry: Callable[[int, float], None] | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rand: Callable[[float, float], float] = random.uniform,
) -> T:
    if retries <= 0:
        raise ValueError("retries must be > 0")
    attempt = 0
    while attempt < retries:
        try:
            return await operation()
        except Exception as exc:
            attempt += 1
            if should_retry and not should_retry(exc):
                raise FetchError(str(exc), attempts=attempt, last_error=exc) from exc
            if attempt >= retries:
                raise FetchError(str(exc), attempts=attempt, last_error=exc) from exc
            delay = compute_backoff_delay(
                attempt - 1,
                base_delay_seconds,
                max_delay_seconds,
                jitter_seconds,
                rand=rand,
            )
            if on_retry:
                on_retry(attempt, delay)
            await sleep(delay)
    raise FetchError("retry attempts exhausted", attempts=attempt)
