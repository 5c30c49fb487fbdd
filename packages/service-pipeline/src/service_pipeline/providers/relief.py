from __future__ import annotations

from pydantic import BaseModel

from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.languages import normalize_languages
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import ServiceQuery, ServiceRecord, ServiceSource, ServiceType
from service_pipeline.providers.base import BaseProviderAdapter, parse_payload


class ReliefFeedItem(BaseModel):
    id: int | str
    name: str = ""
    type: str | None = None
    address: str | None = None
    phone_number: str | None = None
    email: str | None = None
    website: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    languages: list[str] = []
    hours: str | None = None
    description: str | None = None


class ReliefFeedResponse(BaseModel):
    results: list[ReliefFeedItem] = []


class ReliefFeedAdapter(BaseProviderAdapter):
    source = ServiceSource.REFUGEE_INFO
    badge = "RefugeeInfo"
    bucket = "relief"
    category_table = {service_type: (service_type.value,) for service_type in ServiceType}

    def __init__(
        self,
        fetch_client: ResilientFetchClient,
        base_url: str,
        metrics: InMemoryPipelineMetricsCollector | None = None,
    ) -> None:
        super().__init__(fetch_client, metrics=metrics)
        self._base_url = base_url.rstrip("/")

    async def fetch_category(self, token: str, query: ServiceQuery) -> list[ReliefFeedItem]:
        response = await self._fetch_client.fetch(
            "GET",
            f"{self._base_url}/services/search/",
            params={"type": token, "country": query.country},
        )
        return parse_payload(ReliefFeedResponse, response).results

    def raw_key(self, item: ReliefFeedItem) -> str:
        return str(item.id)

    def to_record(self, item: ReliefFeedItem, query: ServiceQuery) -> ServiceRecord:
        try:
            service_type = ServiceType(item.type) if item.type else query.service_type
        except ValueError:
            service_type = query.service_type
        return ServiceRecord(
            name=item.name,
            type=service_type,
            address=item.address or "",
            latitude=item.latitude,
            longitude=item.longitude,
            phone=item.phone_number or "",
            email=item.email or "",
            website=item.website or None,
            hours=item.hours or "",
            languages=normalize_languages(item.languages) or ("en",),
            description=item.description or self.describe(item.name),
            source=self.source,
            external_id=self.raw_key(item),
            country=query.country,
        )
