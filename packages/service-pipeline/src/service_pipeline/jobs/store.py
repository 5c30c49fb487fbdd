from __future__ import annotations

import asyncio
import dataclasses
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from service_pipeline.core.exceptions import OwnershipError, ServiceNotFoundError, ValidationError
from service_pipeline.core.languages import normalize_languages
from service_pipeline.core.models import ServiceRecord, ServiceSource, ServiceType, validate_service

MUTABLE_FIELDS = (
    "name",
    "type",
    "address",
    "latitude",
    "longitude",
    "phone",
    "email",
    "website",
    "hours",
    "languages",
    "description",
    "country",
)
NULLABLE_FIELDS = frozenset({"website", "country"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_service_id() -> str:
    return str(uuid.uuid4())


def prepare_provider_records(records: Iterable[ServiceRecord]) -> list[ServiceRecord]:
    """Validate provider records and keep the last one per ``(source, external_id)``."""
    deduped: "OrderedDict[tuple[str, str | None], ServiceRecord]" = OrderedDict()
    for record in records:
        if record.source is ServiceSource.MANUAL:
            raise ValueError("manual records cannot be written through provider sync")
        record = validate_service(dataclasses.replace(record, languages=normalize_languages(record.languages)))
        deduped[record.identity_key()] = record
    return list(deduped.values())


def prepare_manual_record(record: ServiceRecord, owner: str) -> ServiceRecord:
    return validate_service(
        dataclasses.replace(
            record,
            source=ServiceSource.MANUAL,
            external_id=None,
            created_by=owner,
            languages=normalize_languages(record.languages),
        )
    )


def apply_changes(record: ServiceRecord, changes: Mapping[str, Any]) -> ServiceRecord:
    unknown = sorted(set(changes) - set(MUTABLE_FIELDS))
    if unknown:
        raise ValueError(f"fields cannot be changed: {', '.join(unknown)}")
    nulled = sorted(name for name, value in changes.items() if value is None and name not in NULLABLE_FIELDS)
    if nulled:
        raise ValidationError(f"fields cannot be null: {', '.join(nulled)}")
    updates = dict(changes)
    if "type" in updates:
        updates["type"] = ServiceType(updates["type"])
    if "languages" in updates:
        updates["languages"] = normalize_languages(updates["languages"] or ())
    return validate_service(dataclasses.replace(record, **updates))


def ensure_owner(record: ServiceRecord, owner: str) -> None:
    if record.source is not ServiceSource.MANUAL:
        raise OwnershipError("only manually created services can be changed")
    if record.created_by != owner:
        raise OwnershipError("service belongs to another user")


class ServiceRepository(ABC):
    @abstractmethod
    async def list_services(
        self,
        service_type: ServiceType | None = None,
        country: str | None = None,
        source: ServiceSource | None = None,
    ) -> list[ServiceRecord]:
        raise NotImplementedError

    @abstractmethod
    async def get(self, service_id: str) -> ServiceRecord:
        raise NotImplementedError

    @abstractmethod
    async def upsert_by_external_id(self, records: list[ServiceRecord]) -> int:
        raise NotImplementedError

    @abstractmethod
    async def replace_by_country(self, source: ServiceSource, country: str, records: list[ServiceRecord]) -> int:
        raise NotImplementedError

    @abstractmethod
    async def create_manual(self, record: ServiceRecord, owner: str) -> ServiceRecord:
        raise NotImplementedError

    @abstractmethod
    async def update_manual(self, service_id: str, changes: Mapping[str, Any], owner: str) -> ServiceRecord:
        raise NotImplementedError

    @abstractmethod
    async def delete_manual(self, service_id: str, owner: str) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True


class InMemoryServiceRepository(ServiceRepository):
    """Process-local store. Writes build a new snapshot and swap it in, so a failed call leaves no trace."""

    def __init__(
        self,
        records: Iterable[ServiceRecord] = (),
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_service_id,
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self._rows: dict[str, ServiceRecord] = {}
        self._lock = asyncio.Lock()
        for record in records:
            stored = self._stamp(record)
            self._rows[stored.id] = stored

    def _stamp(self, record: ServiceRecord) -> ServiceRecord:
        now = self._clock()
        return dataclasses.replace(
            record,
            id=record.id or self._id_factory(),
            created_at=record.created_at or now,
            updated_at=now,
        )

    async def list_services(
        self,
        service_type: ServiceType | None = None,
        country: str | None = None,
        source: ServiceSource | None = None,
    ) -> list[ServiceRecord]:
        return [
            record
            for record in self._rows.values()
            if (service_type is None or record.type is service_type)
            and (country is None or record.country == country)
            and (source is None or record.source is source)
        ]

    async def get(self, service_id: str) -> ServiceRecord:
        record = self._rows.get(service_id)
        if record is None:
            raise ServiceNotFoundError(f"service {service_id} not found")
        return record

    async def upsert_by_external_id(self, records: list[ServiceRecord]) -> int:
        prepared = prepare_provider_records(records)
        if not prepared:
            return 0
        async with self._lock:
            snapshot = dict(self._rows)
            index = {row.identity_key(): row_id for row_id, row in snapshot.items() if row.external_id is not None}
            now = self._clock()
            for record in prepared:
                row_id = index.get(record.identity_key())
                if row_id is None:
                    stored = dataclasses.replace(
                        record, id=self._id_factory(), created_by=None, created_at=now, updated_at=now
                    )
                    snapshot[stored.id] = stored
                    index[record.identity_key()] = stored.id
                    continue
                existing = snapshot[row_id]
                changes = {name: getattr(record, name) for name in MUTABLE_FIELDS}
                snapshot[row_id] = dataclasses.replace(existing, **changes, updated_at=now)
            self._rows = snapshot
        return len(prepared)

    async def replace_by_country(self, source: ServiceSource, country: str, records: list[ServiceRecord]) -> int:
        if source is ServiceSource.MANUAL:
            raise ValueError("manual records cannot be replaced by country")
        prepared = prepare_provider_records(dataclasses.replace(record, country=country) for record in records)
        if any(record.source is not source for record in prepared):
            raise ValueError(f"all records must come from {source.value}")
        async with self._lock:
            snapshot = {
                row_id: row
                for row_id, row in self._rows.items()
                if not (row.source is source and row.country == country)
            }
            now = self._clock()
            for record in prepared:
                stored = dataclasses.replace(record, id=self._id_factory(), created_by=None, created_at=now, updated_at=now)
                snapshot[stored.id] = stored
            self._rows = snapshot
        return len(prepared)

    async def create_manual(self, record: ServiceRecord, owner: str) -> ServiceRecord:
        prepared = prepare_manual_record(record, owner)
        now = self._clock()
        stored = dataclasses.replace(prepared, id=self._id_factory(), created_at=now, updated_at=now)
        async with self._lock:
            self._rows = {**self._rows, stored.id: stored}
        return stored

    async def update_manual(self, service_id: str, changes: Mapping[str, Any], owner: str) -> ServiceRecord:
        async with self._lock:
            existing = await self.get(service_id)
            ensure_owner(existing, owner)
            updated = dataclasses.replace(apply_changes(existing, changes), updated_at=self._clock())
            self._rows = {**self._rows, service_id: updated}
        return updated

    async def delete_manual(self, service_id: str, owner: str) -> None:
        async with self._lock:
            existing = await self.get(service_id)
            ensure_owner(existing, owner)
            self._rows = {row_id: row for row_id, row in self._rows.items() if row_id != service_id}
