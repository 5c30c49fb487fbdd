from __future__ import annotations

import asyncio

import httpx
import pytest

from service_pipeline.core.aggregator import ServiceAggregator
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import ServiceRecord, ServiceSource, ServiceType
from service_pipeline.jobs.store import InMemoryServiceRepository
from service_pipeline.providers.osm import OsmAdapter


def record(name: str, source: ServiceSource, external_id: str | None, country: str = "Jordan") -> ServiceRecord:
    return ServiceRecord(
        name=name,
        type=ServiceType.CLINIC,
        address="Amman",
        latitude=31.95,
        longitude=35.93,
        source=source,
        external_id=external_id,
        country=country,
        created_by="user-1" if source is ServiceSource.MANUAL else None,
    )


class FakeAdapter:
    def __init__(
        self,
        source: ServiceSource,
        bucket: str,
        records: list[ServiceRecord] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.source = source
        self.bucket = bucket
        self.badge = source.value
        self._records = records or []
        self._delay = delay
        self._error = error
        self.queries = []

    async def search(self, query):
        self.queries.append(query)
        await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return list(self._records)


class FailingRepository(InMemoryServiceRepository):
    async def list_services(self, service_type=None, country=None, source=None):
        raise RuntimeError("database unavailable")


def merged(result) -> list:
    items = list(result.internal)
    for bucket_items in result.by_bucket.values():
        items.extend(bucket_items)
    return items


def google_records(count: int) -> list[ServiceRecord]:
    return [record(f"Google {idx}", ServiceSource.GOOGLE_PLACES, f"g{idx}") for idx in range(count)]


def osm_records(count: int) -> list[ServiceRecord]:
    return [record(f"OSM {idx}", ServiceSource.OSM, f"node/{idx}") for idx in range(count)]


@pytest.mark.asyncio
async def test_jordan_clinic_scenario_ranks_and_truncates() -> None:
    async def no_sleep(_: float) -> None:
        return None

    def overpass(_: httpx.Request) -> httpx.Response:
        nodes = [
            {"type": "node", "id": 1, "lat": 31.9, "lon": 35.9, "tags": {"name": "A", "healthcare": "clinic"}},
            {"type": "node", "id": 2, "lat": 31.9, "lon": 35.9, "tags": {"name": "B", "healthcare": "clinic"}},
            {"type": "node", "id": 1, "lat": 31.9, "lon": 35.9, "tags": {"name": "A", "healthcare": "clinic"}},
        ]
        return httpx.Response(200, json={"elements": nodes})

    transport = httpx.MockTransport(overpass)
    fetch_client = ResilientFetchClient(
        client_factory=lambda: httpx.AsyncClient(transport=transport),
        sleep=no_sleep,
    )
    repository = InMemoryServiceRepository(
        [
            record("Manual 1", ServiceSource.MANUAL, None),
            record("Manual 2", ServiceSource.MANUAL, None),
            record("Manual Kenya", ServiceSource.MANUAL, None, country="Kenya"),
        ]
    )
    aggregator = ServiceAggregator(
        repository=repository,
        adapters=[OsmAdapter(fetch_client), FakeAdapter(ServiceSource.GOOGLE_PLACES, "google", google_records(4))],
        limit=5,
    )

    result = await aggregator.aggregate(ServiceType.CLINIC, "Jordan")

    assert result.error is None
    assert [item.service.name for item in result.internal] == ["Manual 1", "Manual 2"]
    assert [item.service.external_id for item in result.by_bucket["osm"]] == ["node/1", "node/2"]
    assert [item.service.external_id for item in result.by_bucket["google"]] == ["g0"]
    assert result.by_bucket["relief"] == []
    assert result.count == 5
    assert [item.priority for item in merged(result)] == [1, 1, 2, 2, 3]
    assert {item.badge for item in result.internal} == {"Verified"}
    assert result.by_bucket["google"][0].badge == "GooglePlaces"


@pytest.mark.asyncio
async def test_merge_order_is_independent_of_completion_order() -> None:
    async def run(osm_delay: float, google_delay: float) -> list[str]:
        aggregator = ServiceAggregator(
            repository=InMemoryServiceRepository(),
            adapters=[
                FakeAdapter(ServiceSource.OSM, "osm", osm_records(2), delay=osm_delay),
                FakeAdapter(ServiceSource.GOOGLE_PLACES, "google", google_records(2), delay=google_delay),
            ],
        )
        result = await aggregator.aggregate(ServiceType.CLINIC, "Jordan")
        return [item.service.external_id for item in merged(result)]

    assert await run(0.03, 0.0) == await run(0.0, 0.03) == ["node/0", "node/1", "g0", "g1"]


@pytest.mark.asyncio
async def test_one_failing_source_is_tolerated() -> None:
    metrics = InMemoryPipelineMetricsCollector()
    aggregator = ServiceAggregator(
        repository=InMemoryServiceRepository([record("Manual", ServiceSource.MANUAL, None)]),
        adapters=[
            FakeAdapter(ServiceSource.OSM, "osm", error=RuntimeError("overpass down")),
            FakeAdapter(ServiceSource.GOOGLE_PLACES, "google", google_records(1)),
        ],
        metrics=metrics,
    )

    result = await aggregator.aggregate(ServiceType.CLINIC, "Jordan")

    assert result.error is None
    assert result.by_bucket["osm"] == []
    assert len(result.internal) == 1
    assert len(result.by_bucket["google"]) == 1
    assert metrics.aggregate_source_failures_total["OSM"] == 1
    assert metrics.aggregate_requests_total["partial"] == 1


@pytest.mark.asyncio
async def test_slow_source_counts_as_failure() -> None:
    aggregator = ServiceAggregator(
        repository=InMemoryServiceRepository(),
        adapters=[
            FakeAdapter(ServiceSource.OSM, "osm", osm_records(1), delay=1.0),
            FakeAdapter(ServiceSource.GOOGLE_PLACES, "google", google_records(1)),
        ],
        timeout_seconds=0.05,
    )

    result = await aggregator.aggregate(ServiceType.CLINIC, "Jordan")

    assert result.error is None
    assert result.by_bucket["osm"] == []
    assert [item.service.external_id for item in result.by_bucket["google"]] == ["g0"]


@pytest.mark.asyncio
async def test_all_sources_failing_sets_error() -> None:
    aggregator = ServiceAggregator(
        repository=FailingRepository(),
        adapters=[
            FakeAdapter(ServiceSource.OSM, "osm", error=RuntimeError("overpass down")),
            FakeAdapter(ServiceSource.GOOGLE_PLACES, "google", error=RuntimeError("quota")),
        ],
    )

    result = await aggregator.aggregate(ServiceType.CLINIC, "Jordan")

    assert result.error is not None
    assert "internal: database unavailable" in result.error
    assert "OSM: overpass down" in result.error
    assert "GooglePlaces: quota" in result.error
    assert result.internal == []
    assert all(items == [] for items in result.by_bucket.values())
    assert result.to_dict()["error"] == result.error


@pytest.mark.asyncio
async def test_aggregator_passes_query_to_adapters() -> None:
    adapter = FakeAdapter(ServiceSource.OSM, "osm")
    aggregator = ServiceAggregator(repository=InMemoryServiceRepository(), adapters=[adapter])

    await aggregator.aggregate(ServiceType.FOOD, "Kenya")

    assert adapter.queries[0].service_type is ServiceType.FOOD
    assert adapter.queries[0].country == "Kenya"
    assert adapter.queries[0].location is None
