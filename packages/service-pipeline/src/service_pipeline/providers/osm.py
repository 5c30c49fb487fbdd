from __future__ import annotations

from pydantic import BaseModel

from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import ServiceQuery, ServiceRecord, ServiceSource, ServiceType
from service_pipeline.providers.base import BaseProviderAdapter, parse_payload

UNNAMED_SERVICE = "Unnamed Service"


class OverpassElement(BaseModel):
    type: str
    id: int
    lat: float | None = None
    lon: float | None = None
    tags: dict[str, str] = {}


class OverpassResponse(BaseModel):
    elements: list[OverpassElement] = []


def classify_tags(tags: dict[str, str]) -> ServiceType | None:
    amenity = tags.get("amenity")
    social_facility = tags.get("social_facility")
    if tags.get("healthcare") in ("clinic", "doctor"):
        return ServiceType.CLINIC
    if social_facility == "shelter":
        return ServiceType.SHELTER
    if amenity == "social_facility" and social_facility == "food_bank":
        return ServiceType.FOOD
    if amenity == "social_facility" and social_facility == "refugee_site":
        return ServiceType.SHELTER
    if amenity in ("school", "language_school"):
        return ServiceType.EDUCATION
    if tags.get("office") == "lawyer":
        return ServiceType.LEGAL
    if tags.get("office") == "ngo" or amenity == "social_facility":
        return ServiceType.OTHER
    return None


def compose_address(tags: dict[str, str]) -> str:
    if tags.get("addr:full"):
        return tags["addr:full"]
    street = " ".join(part for part in (tags.get("addr:street"), tags.get("addr:housenumber")) if part)
    return ", ".join(part for part in (street, tags.get("addr:city")) if part)


class OsmAdapter(BaseProviderAdapter):
    source = ServiceSource.OSM
    badge = "OSM"
    display_name = "OpenStreetMap"
    bucket = "osm"
    category_table = {
        ServiceType.CLINIC: ('["healthcare"~"clinic|doctor"]',),
        ServiceType.SHELTER: (
            '["social_facility"="shelter"]',
            '["amenity"="social_facility"]["social_facility"="refugee_site"]',
        ),
        ServiceType.FOOD: ('["amenity"="social_facility"]["social_facility"="food_bank"]',),
        ServiceType.EDUCATION: ('["amenity"~"school|language_school"]',),
        ServiceType.LEGAL: ('["office"="lawyer"]',),
        ServiceType.OTHER: ('["office"="ngo"]',),
    }

    def __init__(
        self,
        fetch_client: ResilientFetchClient,
        overpass_url: str = "https://overpass-api.de/api/interpreter",
        metrics: InMemoryPipelineMetricsCollector | None = None,
    ) -> None:
        super().__init__(fetch_client, metrics=metrics)
        self._overpass_url = overpass_url

    @staticmethod
    def build_query(token: str, query: ServiceQuery) -> str:
        country = query.country.replace("\\", "\\\\").replace('"', '\\"')
        bbox = f"({query.bbox.to_overpass()})" if query.bbox else ""
        return (
            "[out:json][timeout:25];\n"
            f'area["name"="{country}"]["admin_level"~"2|4"]["boundary"="administrative"]->.searchArea;\n'
            f"(\n  node{token}(area.searchArea){bbox};\n);\n"
            "out body;"
        )

    async def fetch_category(self, token: str, query: ServiceQuery) -> list[OverpassElement]:
        response = await self._fetch_client.fetch(
            "POST",
            self._overpass_url,
            data={"data": self.build_query(token, query)},
            headers={"Accept": "application/json"},
        )
        return parse_payload(OverpassResponse, response).elements

    def raw_key(self, item: OverpassElement) -> str:
        return f"{item.type}/{item.id}"

    def to_record(self, item: OverpassElement, query: ServiceQuery) -> ServiceRecord:
        tags = item.tags
        name = tags.get("name") or UNNAMED_SERVICE
        return ServiceRecord(
            name=name,
            type=classify_tags(tags) or query.service_type,
            address=compose_address(tags),
            latitude=item.lat,
            longitude=item.lon,
            phone=tags.get("phone") or tags.get("contact:phone") or "",
            email=tags.get("email") or tags.get("contact:email") or "",
            website=tags.get("website") or tags.get("contact:website") or None,
            hours=tags.get("opening_hours", ""),
            languages=("en",),
            description=self.describe(name),
            source=self.source,
            external_id=self.raw_key(item),
            country=query.country,
        )
