from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from service_pipeline.core.exceptions import ValidationError


class ServiceType(StrEnum):
    CLINIC = "clinic"
    SHELTER = "shelter"
    LEGAL = "legal"
    FOOD = "food"
    EDUCATION = "education"
    OTHER = "other"


class ServiceSource(StrEnum):
    MANUAL = "manual"
    OSM = "OSM"
    GOOGLE_PLACES = "GooglePlaces"
    REFUGEE_INFO = "RefugeeInfo"


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class BoundingBox:
    """Overpass ordering: south, west, north, east."""

    south: float
    west: float
    north: float
    east: float

    @classmethod
    def parse(cls, raw: str) -> "BoundingBox":
        parts = [part.strip() for part in raw.split(",")]
        if len(parts) != 4:
            raise ValueError("bbox must be 'south,west,north,east'")
        try:
            south, west, north, east = (float(part) for part in parts)
        except ValueError as exc:
            raise ValueError("bbox values must be numbers") from exc
        if not (-90 <= south <= north <= 90) or not (-180 <= west <= 180 and -180 <= east <= 180):
            raise ValueError("bbox is out of range")
        return cls(south=south, west=west, north=north, east=east)

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(lat=(self.south + self.north) / 2, lng=(self.west + self.east) / 2)

    def to_overpass(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"


@dataclass(frozen=True)
class ServiceQuery:
    service_type: ServiceType
    country: str
    location: GeoPoint | None = None
    bbox: BoundingBox | None = None
    country_resolved: bool = False


@dataclass(frozen=True)
class ServiceRecord:
    name: str
    type: ServiceType
    address: str
    latitude: float
    longitude: float
    source: ServiceSource
    phone: str = ""
    email: str = ""
    website: str | None = None
    hours: str = ""
    languages: tuple[str, ...] = ()
    description: str = ""
    external_id: str | None = None
    country: str | None = None
    created_by: str | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def identity_key(self) -> tuple[str, str | None]:
        return (self.source.value, self.external_id)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        payload["source"] = self.source.value
        payload["languages"] = list(self.languages)
        payload["created_at"] = self.created_at.isoformat() if self.created_at else None
        payload["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return payload


@dataclass(frozen=True)
class RankedService:
    service: ServiceRecord
    priority: int
    badge: str

    def to_dict(self) -> dict[str, Any]:
        payload = self.service.to_dict()
        payload["priority"] = self.priority
        payload["badge"] = self.badge
        return payload


@dataclass(frozen=True)
class RefreshResult:
    success: bool
    count: int
    provider: str = ""
    country: str = ""


# Mirrors the VARCHAR widths of the services table.
FIELD_MAX_LENGTHS = {
    "name": 255,
    "phone": 64,
    "email": 255,
    "external_id": 255,
    "country": 128,
    "created_by": 128,
}


def validate_service(record: ServiceRecord) -> ServiceRecord:
    if not record.name or not record.name.strip():
        raise ValidationError("name is required")
    if record.latitude is None or record.longitude is None:
        raise ValidationError("latitude and longitude are both required")
    if not (-90 <= record.latitude <= 90):
        raise ValidationError(f"latitude out of range: {record.latitude}")
    if not (-180 <= record.longitude <= 180):
        raise ValidationError(f"longitude out of range: {record.longitude}")
    if record.source is ServiceSource.MANUAL:
        if record.external_id is not None:
            raise ValidationError("manual records cannot carry an external id")
    elif not record.external_id:
        raise ValidationError(f"{record.source.value} records require an external id")
    for field_name, limit in FIELD_MAX_LENGTHS.items():
        value = getattr(record, field_name)
        if value is not None and len(value) > limit:
            raise ValidationError(f"{field_name} exceeds {limit} characters")
    return record
