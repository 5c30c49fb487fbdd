from __future__ import annotations

import asyncio
import logging
import os

from devkit.config import ServiceSettings, load_settings
from devkit.observability import configure_logging
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import BoundingBox, RefreshResult
from service_pipeline.jobs.refresh import RefreshService
from service_pipeline.jobs.sql_store import build_service_repository
from service_pipeline.jobs.store import ServiceRepository
from service_pipeline.providers.factory import build_provider_adapters

logger = logging.getLogger(__name__)


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"missing required environment variable: {name}")
    return value


def _parse_bbox(raw: str | None) -> BoundingBox | None:
    if not raw:
        return None
    try:
        return BoundingBox.parse(raw)
    except ValueError as exc:
        raise RuntimeError(f"invalid REFRESH_BBOX: {exc}") from exc


async def run_refresh(
    settings: ServiceSettings,
    provider: str,
    country: str,
    bbox: BoundingBox | None = None,
    repository: ServiceRepository | None = None,
    fetch_client: ResilientFetchClient | None = None,
) -> RefreshResult:
    metrics = InMemoryPipelineMetricsCollector()
    fetch_client = fetch_client or ResilientFetchClient.from_settings(settings, metrics=metrics)
    service = RefreshService(
        repository=repository or build_service_repository(settings),
        adapters=build_provider_adapters(settings, fetch_client, metrics=metrics),
        metrics=metrics,
    )
    return await service.refresh_provider(provider, country, bbox=bbox)


def main() -> None:
    settings = load_settings("service-refresh")
    configure_logging(settings.LOG_LEVEL)
    provider = _required_env("REFRESH_PROVIDER")
    country = _required_env("REFRESH_COUNTRY")
    bbox = _parse_bbox(os.getenv("REFRESH_BBOX"))
    result = asyncio.run(run_refresh(settings, provider, country, bbox=bbox))
    logger.info("refresh_job_finished", extra={"provider": result.provider, "country": result.country, "count": result.count})


if __name__ == "__main__":
    main()
