from __future__ import annotations

from collections.abc import Sequence

from devkit.config import ServiceSettings
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.providers.base import BaseProviderAdapter
from service_pipeline.providers.geocoder import CountryResolver, GoogleGeocodingResolver
from service_pipeline.providers.osm import OsmAdapter
from service_pipeline.providers.places import PlacesAdapter
from service_pipeline.providers.relief import ReliefFeedAdapter


def build_provider_adapters(
    settings: ServiceSettings,
    fetch_client: ResilientFetchClient,
    metrics: InMemoryPipelineMetricsCollector | None = None,
    resolver: CountryResolver | None = None,
) -> list[BaseProviderAdapter]:
    """Fixed adapter order: OSM, then GooglePlaces and RefugeeInfo when configured."""
    adapters: list[BaseProviderAdapter] = [
        OsmAdapter(fetch_client, overpass_url=settings.OVERPASS_URL, metrics=metrics),
    ]
    if settings.GOOGLE_PLACES_API_KEY:
        if resolver is None:
            resolver = GoogleGeocodingResolver(
                fetch_client,
                api_key=settings.GOOGLE_PLACES_API_KEY,
                base_url=settings.GOOGLE_PLACES_BASE_URL,
            )
        adapters.append(
            PlacesAdapter(
                fetch_client,
                api_key=settings.GOOGLE_PLACES_API_KEY,
                resolver=resolver,
                base_url=settings.GOOGLE_PLACES_BASE_URL,
                metrics=metrics,
            )
        )
    if settings.RELIEF_FEED_BASE_URL:
        adapters.append(ReliefFeedAdapter(fetch_client, base_url=settings.RELIEF_FEED_BASE_URL, metrics=metrics))
    return adapters


def find_adapter(adapters: Sequence[BaseProviderAdapter], provider: str) -> BaseProviderAdapter:
    wanted = provider.strip().lower()
    for adapter in adapters:
        if wanted in (adapter.source.value.lower(), adapter.bucket):
            return adapter
    supported = ", ".join(adapter.source.value for adapter in adapters)
    raise ValueError(f"unsupported provider '{provider}', supported: {supported}")
