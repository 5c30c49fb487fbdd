from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import (
    BoundingBox,
    GeoPoint,
    RankedService,
    ServiceQuery,
    ServiceRecord,
    ServiceSource,
    ServiceType,
)

if TYPE_CHECKING:
    from service_pipeline.jobs.store import ServiceRepository
    from service_pipeline.providers.base import BaseProviderAdapter

logger = logging.getLogger(__name__)

VERIFIED_BADGE = "Verified"
INTERNAL_BUCKET = "internal"
INTERNAL_PRIORITY = 1
PROVIDER_BUCKETS = ("osm", "google", "relief")


@dataclass
class AggregateResult:
    internal: list[RankedService] = field(default_factory=list)
    by_bucket: dict[str, list[RankedService]] = field(
        default_factory=lambda: {bucket: [] for bucket in PROVIDER_BUCKETS}
    )
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.internal) + sum(len(items) for items in self.by_bucket.values())

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {INTERNAL_BUCKET: [item.to_dict() for item in self.internal]}
        for bucket, items in self.by_bucket.items():
            payload[bucket] = [item.to_dict() for item in items]
        payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class _Source:
    name: str
    bucket: str
    priority: int
    badge: str
    operation: Callable[[], Awaitable[list[ServiceRecord]]]


class ServiceAggregator:
    """Read-only fan-out over the internal store and the configured provider adapters.

    Every source runs concurrently under its own timeout; a failing source
    contributes nothing. Results are ranked by source priority (internal first,
    then adapters in configured order) and truncated to ``limit``.
    """

    def __init__(
        self,
        repository: "ServiceRepository",
        adapters: Sequence["BaseProviderAdapter"],
        timeout_seconds: float = 9.0,
        limit: int = 5,
        metrics: InMemoryPipelineMetricsCollector | None = None,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._repository = repository
        self._adapters = list(adapters)
        self._timeout_seconds = timeout_seconds
        self._limit = limit
        self._metrics = metrics

    async def aggregate(
        self,
        service_type: ServiceType,
        country: str,
        location: GeoPoint | None = None,
        bbox: BoundingBox | None = None,
    ) -> AggregateResult:
        query = ServiceQuery(service_type=service_type, country=country, location=location, bbox=bbox)
        sources = [
            _Source(
                name=INTERNAL_BUCKET,
                bucket=INTERNAL_BUCKET,
                priority=INTERNAL_PRIORITY,
                badge=VERIFIED_BADGE,
                operation=lambda: self._repository.list_services(
                    service_type=service_type,
                    country=country,
                    source=ServiceSource.MANUAL,
                ),
            )
        ]
        for index, adapter in enumerate(self._adapters):
            sources.append(
                _Source(
                    name=adapter.source.value,
                    bucket=adapter.bucket,
                    priority=INTERNAL_PRIORITY + index + 1,
                    badge=adapter.badge,
                    operation=lambda adapter=adapter: adapter.search(query),
                )
            )

        outcomes = await asyncio.gather(*(self._run_source(source) for source in sources))

        ranked: list[RankedService] = []
        failures: list[str] = []
        for source, (records, error) in zip(sources, outcomes):
            if error is not None:
                failures.append(f"{source.name}: {error}")
                continue
            ranked.extend(RankedService(service=record, priority=source.priority, badge=source.badge) for record in records)

        ranked.sort(key=lambda item: item.priority)
        ranked = ranked[: self._limit]

        result = AggregateResult()
        for item in ranked:
            if item.priority == INTERNAL_PRIORITY:
                result.internal.append(item)
            else:
                bucket = sources[item.priority - INTERNAL_PRIORITY].bucket
                result.by_bucket.setdefault(bucket, []).append(item)
        if len(failures) == len(sources):
            result.error = "all sources failed: " + "; ".join(failures)

        outcome = "failed" if result.error else ("partial" if failures else "ok")
        if self._metrics:
            self._metrics.increment_aggregate_request(outcome)
        logger.info(
            "aggregate_completed",
            extra={
                "service_type": service_type.value,
                "country": country,
                "result_count": result.count,
                "failed_sources": len(failures),
                "outcome": outcome,
            },
        )
        return result

    async def _run_source(self, source: _Source) -> tuple[list[ServiceRecord], str | None]:
        try:
            records = await asyncio.wait_for(source.operation(), timeout=self._timeout_seconds)
            return records, None
        except asyncio.TimeoutError:
            error = f"timed out after {self._timeout_seconds}s"
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
        logger.warning("aggregate_source_failed", extra={"source": source.name, "error": error})
        if self._metrics:
            self._metrics.increment_source_failure(source.name)
        return [], error
