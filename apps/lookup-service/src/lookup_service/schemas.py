from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from service_pipeline.core.models import ServiceType


class LocationPayload(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class SearchRequest(BaseModel):
    type: ServiceType
    country: str = Field(min_length=1, max_length=128)
    location: LocationPayload | None = None


class RefreshRequest(BaseModel):
    provider: str = Field(min_length=1, max_length=32)
    country: str = Field(min_length=1, max_length=128)
    bbox: str | None = Field(default=None, max_length=128)


class ServiceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: ServiceType
    address: str = Field(default="", max_length=500)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    phone: str = Field(default="", max_length=64)
    email: str = Field(default="", max_length=255)
    website: str | None = Field(default=None, max_length=2048)
    hours: str = ""
    languages: list[str] = Field(default_factory=list)
    description: str = ""
    country: str | None = Field(default=None, max_length=128)


class ServiceUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: ServiceType | None = None
    address: str | None = Field(default=None, max_length=500)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    phone: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    website: str | None = Field(default=None, max_length=2048)
    hours: str | None = None
    languages: list[str] | None = None
    description: str | None = None
    country: str | None = Field(default=None, max_length=128)

    @field_validator(
        "name",
        "type",
        "address",
        "latitude",
        "longitude",
        "phone",
        "email",
        "hours",
        "languages",
        "description",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("field cannot be null; send an empty value instead")
        return value
