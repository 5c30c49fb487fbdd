from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from devkit.observability import start_span

from service_pipeline.core.dedup import Deduplicator
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import BoundingBox, RefreshResult, ServiceQuery, ServiceRecord, ServiceSource, ServiceType
from service_pipeline.jobs.store import ServiceRepository
from service_pipeline.providers.base import BaseProviderAdapter
from service_pipeline.providers.factory import find_adapter

logger = logging.getLogger(__name__)


class RefreshService:
    """Pulls every service type for one provider and country into the store.

    OSM data is replaced per country; other providers are upserted by external id.
    Refreshes of the same provider and country are serialised within the process.
    """

    def __init__(
        self,
        repository: ServiceRepository,
        adapters: Sequence[BaseProviderAdapter],
        metrics: InMemoryPipelineMetricsCollector | None = None,
        on_refreshed: Callable[[], Awaitable[None]] | None = None,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._repository = repository
        self._adapters = list(adapters)
        self._metrics = metrics
        self._on_refreshed = on_refreshed
        self._timer = timer
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, source: ServiceSource, country: str) -> asyncio.Lock:
        key = (source.value, country)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def refresh_provider(
        self,
        provider: str,
        country: str,
        bbox: BoundingBox | str | None = None,
    ) -> RefreshResult:
        country = country.strip()
        if not country:
            raise ValueError("country is required")
        adapter = find_adapter(self._adapters, provider)
        if isinstance(bbox, str):
            bbox = BoundingBox.parse(bbox)
        if adapter.source is ServiceSource.GOOGLE_PLACES and bbox is None:
            raise ValueError("GooglePlaces refresh requires a bbox")

        provider_name = adapter.source.value
        async with self._lock_for(adapter.source, country):
            span_attributes = {"refresh.provider": provider_name, "refresh.country": country}
            with start_span("service_refresh", span_attributes) as span:
                started = self._timer()
                logger.info("refresh_started", extra={"provider": provider_name, "country": country})
                try:
                    records = await self._fetch_all(adapter, country, bbox)
                    count = await self._persist(adapter, country, records)
                except Exception as exc:
                    if self._metrics:
                        self._metrics.increment_refresh_run(provider_name, "failed")
                    logger.warning(
                        "refresh_failed",
                        extra={"provider": provider_name, "country": country, "error": str(exc)},
                    )
                    raise
                duration = self._timer() - started
                span.set_attribute("refresh.count", count)

        if self._metrics:
            self._metrics.increment_refresh_run(provider_name, "success")
            self._metrics.add_refresh_records(provider_name, "saved", count)
            self._metrics.observe_refresh_duration(provider_name, duration)
        logger.info(
            "refresh_completed",
            extra={"provider": provider_name, "country": country, "count": count, "duration_seconds": duration},
        )
        if count and self._on_refreshed:
            await self._on_refreshed()
        return RefreshResult(success=True, count=count, provider=provider_name, country=country)

    async def _fetch_all(
        self,
        adapter: BaseProviderAdapter,
        country: str,
        bbox: BoundingBox | None,
    ) -> list[ServiceRecord]:
        # resolved once and shared by every type
        template = await adapter.localize(ServiceQuery(service_type=ServiceType.OTHER, country=country, bbox=bbox))
        batches = await asyncio.gather(
            *(adapter.search(dataclasses.replace(template, service_type=service_type)) for service_type in ServiceType)
        )
        deduplicator: Deduplicator[ServiceRecord] = Deduplicator(lambda record: record.external_id)
        records: list[ServiceRecord] = []
        for batch in batches:
            records.extend(deduplicator.filter(batch))
        return records

    async def _persist(self, adapter: BaseProviderAdapter, country: str, records: list[ServiceRecord]) -> int:
        if not records:
            logger.info("refresh_empty_fetch", extra={"provider": adapter.source.value, "country": country})
            return 0
        if adapter.source is ServiceSource.OSM:
            return await self._repository.replace_by_country(adapter.source, country, records)
        return await self._repository.upsert_by_external_id(records)
