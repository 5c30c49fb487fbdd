from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel

from service_pipeline.core.exceptions import ProviderDataError
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.providers.base import parse_payload


class CountryResolver(Protocol):
    async def resolve_country(self, lat: float, lng: float) -> str: ...


class AddressComponent(BaseModel):
    long_name: str
    short_name: str = ""
    types: list[str] = []


class GeocodeResult(BaseModel):
    address_components: list[AddressComponent] = []


class GeocodeResponse(BaseModel):
    status: str
    results: list[GeocodeResult] = []
    error_message: str | None = None


class GoogleGeocodingResolver:
    def __init__(
        self,
        fetch_client: ResilientFetchClient,
        api_key: str,
        base_url: str = "https://maps.googleapis.com/maps/api",
    ) -> None:
        self._fetch_client = fetch_client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def resolve_country(self, lat: float, lng: float) -> str:
        response = await self._fetch_client.fetch(
            "GET",
            f"{self._base_url}/geocode/json",
            params={"latlng": f"{lat},{lng}", "key": self._api_key},
        )
        payload = parse_payload(GeocodeResponse, response)
        if payload.status == "OK" and payload.results:
            for component in payload.results[0].address_components:
                if "country" in component.types:
                    return component.long_name
        raise ProviderDataError(f"could not determine country from coordinates (status {payload.status})")
