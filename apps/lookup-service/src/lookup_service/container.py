from __future__ import annotations

import logging
from dataclasses import dataclass

from devkit.config import ServiceSettings
from devkit.redis import create_redis_client
from service_pipeline.core.aggregator import ServiceAggregator
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.prometheus_exporter import PipelinePrometheusExporter
from service_pipeline.jobs.refresh import RefreshService
from service_pipeline.jobs.sql_store import build_service_repository
from service_pipeline.jobs.store import ServiceRepository
from service_pipeline.providers.base import BaseProviderAdapter
from service_pipeline.providers.factory import build_provider_adapters

from lookup_service.cache import CacheStore, InMemoryCacheStore, RedisCacheStore, SearchCache

logger = logging.getLogger(__name__)


@dataclass
class LookupContainer:
    settings: ServiceSettings
    repository: ServiceRepository
    aggregator: ServiceAggregator
    refresh_service: RefreshService
    cache: SearchCache
    metrics: InMemoryPipelineMetricsCollector
    exporter: PipelinePrometheusExporter


def _build_cache_store(settings: ServiceSettings) -> CacheStore:
    client = create_redis_client(settings.REDIS_URL)
    if client is None:
        return InMemoryCacheStore()
    return RedisCacheStore(client)


def build_container(
    settings: ServiceSettings,
    repository: ServiceRepository | None = None,
    adapters: list[BaseProviderAdapter] | None = None,
    cache_store: CacheStore | None = None,
    fetch_client: ResilientFetchClient | None = None,
) -> LookupContainer:
    metrics = InMemoryPipelineMetricsCollector()
    repository = repository or build_service_repository(settings)
    if adapters is None:
        fetch_client = fetch_client or ResilientFetchClient.from_settings(settings, metrics=metrics)
        adapters = build_provider_adapters(settings, fetch_client, metrics=metrics)
    cache = SearchCache(
        store=cache_store if cache_store is not None else _build_cache_store(settings),
        ttl_seconds=settings.SEARCH_CACHE_TTL_SECONDS,
    )

    async def invalidate_search_cache() -> None:
        removed = await cache.invalidate()
        logger.info("search_cache_invalidated", extra={"removed": removed})

    return LookupContainer(
        settings=settings,
        repository=repository,
        aggregator=ServiceAggregator(
            repository=repository,
            adapters=adapters,
            timeout_seconds=settings.AGGREGATE_TIMEOUT_SECONDS,
            limit=settings.SEARCH_RESULT_LIMIT,
            metrics=metrics,
        ),
        refresh_service=RefreshService(
            repository=repository,
            adapters=adapters,
            metrics=metrics,
            on_refreshed=invalidate_search_cache,
        ),
        cache=cache,
        metrics=metrics,
        exporter=PipelinePrometheusExporter(),
    )
