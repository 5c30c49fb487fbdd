from __future__ import annotations

import dataclasses
import logging

from pydantic import BaseModel

from service_pipeline.core.exceptions import ProviderDataError
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import GeoPoint, ServiceQuery, ServiceRecord, ServiceSource, ServiceType
from service_pipeline.providers.base import BaseProviderAdapter, parse_payload
from service_pipeline.providers.geocoder import CountryResolver

logger = logging.getLogger(__name__)

PRECISE_RADIUS_METERS = 5000
AREA_RADIUS_METERS = 50000
DETAIL_FIELDS = (
    "name,formatted_address,formatted_phone_number,international_phone_number,"
    "website,opening_hours,geometry"
)


class PlaceLatLng(BaseModel):
    lat: float
    lng: float


class PlaceGeometry(BaseModel):
    location: PlaceLatLng


class PlaceOpeningHours(BaseModel):
    weekday_text: list[str] = []


class PlaceDetails(BaseModel):
    name: str | None = None
    formatted_address: str | None = None
    formatted_phone_number: str | None = None
    international_phone_number: str | None = None
    website: str | None = None
    opening_hours: PlaceOpeningHours | None = None
    geometry: PlaceGeometry | None = None


class PlaceResult(PlaceDetails):
    place_id: str
    vicinity: str | None = None


class NearbySearchResponse(BaseModel):
    status: str
    results: list[PlaceResult] = []
    error_message: str | None = None


class PlaceDetailsResponse(BaseModel):
    status: str
    result: PlaceDetails | None = None
    error_message: str | None = None


class PlacesAdapter(BaseProviderAdapter):
    source = ServiceSource.GOOGLE_PLACES
    badge = "GooglePlaces"
    display_name = "Google Places"
    bucket = "google"
    category_table = {
        ServiceType.CLINIC: ("hospital", "doctor", "health"),
        ServiceType.SHELTER: ("lodging", "local_government_office"),
        ServiceType.LEGAL: ("lawyer",),
        ServiceType.FOOD: ("food_bank", "meal_delivery"),
        ServiceType.EDUCATION: ("school", "university"),
        ServiceType.OTHER: ("point_of_interest",),
    }

    def __init__(
        self,
        fetch_client: ResilientFetchClient,
        api_key: str,
        resolver: CountryResolver | None = None,
        base_url: str = "https://maps.googleapis.com/maps/api",
        metrics: InMemoryPipelineMetricsCollector | None = None,
    ) -> None:
        super().__init__(fetch_client, metrics=metrics)
        self._api_key = api_key
        self._resolver = resolver
        self._base_url = base_url.rstrip("/")

    @staticmethod
    def search_point(query: ServiceQuery) -> tuple[GeoPoint, int] | None:
        if query.location is not None:
            return query.location, PRECISE_RADIUS_METERS
        if query.bbox is not None:
            return query.bbox.center, AREA_RADIUS_METERS
        return None

    async def search(self, query: ServiceQuery) -> list[ServiceRecord]:
        point = self.search_point(query)
        if point is None:
            logger.info("places_search_skipped_without_location", extra={"country": query.country})
            return []
        return await super().search(await self.localize(query))

    async def localize(self, query: ServiceQuery) -> ServiceQuery:
        point = self.search_point(query)
        if query.country_resolved or point is None:
            return query
        country = await self._resolve_country(point[0], query.country)
        return dataclasses.replace(query, country=country, country_resolved=True)

    async def _resolve_country(self, point: GeoPoint, fallback: str) -> str:
        if self._resolver is None:
            return fallback
        try:
            return await self._resolver.resolve_country(point.lat, point.lng)
        except Exception as exc:
            logger.warning("places_country_resolution_failed", extra={"fallback": fallback, "error": str(exc)})
            return fallback

    async def fetch_category(self, token: str, query: ServiceQuery) -> list[PlaceResult]:
        point = self.search_point(query)
        if point is None:
            return []
        location, radius = point
        response = await self._fetch_client.fetch(
            "GET",
            f"{self._base_url}/place/nearbysearch/json",
            params={
                "location": f"{location.lat},{location.lng}",
                "radius": str(radius),
                "type": token,
                "key": self._api_key,
            },
        )
        payload = parse_payload(NearbySearchResponse, response)
        if payload.status == "OK":
            return payload.results
        if payload.status == "ZERO_RESULTS":
            return []
        raise ProviderDataError(f"places nearby search returned {payload.status}: {payload.error_message or ''}")

    def raw_key(self, item: PlaceResult) -> str:
        return item.place_id

    async def enrich(self, item: PlaceResult, query: ServiceQuery) -> PlaceResult:
        response = await self._fetch_client.fetch(
            "GET",
            f"{self._base_url}/place/details/json",
            params={"place_id": item.place_id, "fields": DETAIL_FIELDS, "key": self._api_key},
        )
        payload = parse_payload(PlaceDetailsResponse, response)
        if payload.status != "OK" or payload.result is None:
            logger.warning(
                "places_details_unavailable",
                extra={"place_id": item.place_id, "status": payload.status},
            )
            return item
        merged = {**item.model_dump(), **payload.result.model_dump(exclude_none=True)}
        return PlaceResult.model_validate(merged)

    def to_record(self, item: PlaceResult, query: ServiceQuery) -> ServiceRecord:
        name = item.name or ""
        hours = "; ".join(item.opening_hours.weekday_text) if item.opening_hours else ""
        return ServiceRecord(
            name=name,
            type=query.service_type,
            address=item.formatted_address or item.vicinity or "",
            latitude=item.geometry.location.lat if item.geometry else None,
            longitude=item.geometry.location.lng if item.geometry else None,
            phone=item.formatted_phone_number or item.international_phone_number or "",
            email="",
            website=item.website or None,
            hours=hours,
            languages=("en",),
            description=self.describe(name),
            source=self.source,
            external_id=item.place_id,
            country=query.country,
        )
