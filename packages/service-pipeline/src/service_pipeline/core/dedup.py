from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from typing import Generic, TypeVar

T = TypeVar("T")


def dedupe(items: Iterable[T], key_fn: Callable[[T], Hashable]) -> list[T]:
    """Keep the first item seen for each key, preserving input order."""
    return Deduplicator(key_fn).filter(items)


class Deduplicator(Generic[T]):
    """Seen-key set shared across several batches of one search or refresh."""

    def __init__(self, key_fn: Callable[[T], Hashable]) -> None:
        self._key_fn = key_fn
        self._seen: set[Hashable] = set()

    def filter(self, items: Iterable[T]) -> list[T]:
        kept: list[T] = []
        for item in items:
            key = self._key_fn(item)
            if key in self._seen:
                continue
            self._seen.add(key)
            kept.append(item)
        return kept
