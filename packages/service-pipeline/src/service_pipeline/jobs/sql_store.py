from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from devkit.config import ServiceSettings
from devkit.db import AsyncDatabaseManager, Base
from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
    delete,
    insert,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from service_pipeline.core.exceptions import PersistenceConflictError, PersistenceError, ServiceNotFoundError
from service_pipeline.core.models import ServiceRecord, ServiceSource, ServiceType
from service_pipeline.jobs.store import (
    MUTABLE_FIELDS,
    InMemoryServiceRepository,
    ServiceRepository,
    apply_changes,
    ensure_owner,
    new_service_id,
    prepare_manual_record,
    prepare_provider_records,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_EXTERNAL_ID_CONSTRAINT = "uq_services_source_external_id"
SERVICE_TYPES_SQL = ", ".join(f"'{service_type.value}'" for service_type in ServiceType)


class ServiceORM(Base):
    __tablename__ = "services"
    __table_args__ = (
        UniqueConstraint("source", "external_id", name=UNIQUE_EXTERNAL_ID_CONSTRAINT),
        CheckConstraint(
            "(source = 'manual' AND external_id IS NULL) OR (source <> 'manual' AND external_id IS NOT NULL)",
            name="ck_services_external_id_matches_source",
        ),
        CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_services_latitude_range"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_services_longitude_range"),
        CheckConstraint(f"type IN ({SERVICE_TYPES_SQL})", name="ck_services_type"),
        Index("ix_services_type_country", "type", "country"),
        Index("ix_services_source_country", "source", "country"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    phone: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    hours: Mapped[str] = mapped_column(Text, nullable=False, default="")
    languages: Mapped[list[str]] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def to_row(record: ServiceRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "type": record.type.value,
        "address": record.address,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "phone": record.phone,
        "email": record.email,
        "website": record.website,
        "hours": record.hours,
        "languages": list(record.languages),
        "description": record.description,
        "source": record.source.value,
        "external_id": record.external_id,
        "country": record.country,
        "created_by": record.created_by,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def to_record(row: ServiceORM) -> ServiceRecord:
    return ServiceRecord(
        id=row.id,
        name=row.name,
        type=ServiceType(row.type),
        address=row.address,
        latitude=row.latitude,
        longitude=row.longitude,
        phone=row.phone,
        email=row.email,
        website=row.website,
        hours=row.hours,
        languages=tuple(row.languages or ()),
        description=row.description,
        source=ServiceSource(row.source),
        external_id=row.external_id,
        country=row.country,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def build_upsert_statement(rows: list[dict[str, Any]]):
    """``INSERT .. ON CONFLICT (source, external_id) DO UPDATE``; id, created_by and created_at are kept."""
    stmt = pg_insert(ServiceORM).values(rows)
    updates = {name: stmt.excluded[name] for name in (*MUTABLE_FIELDS, "updated_at")}
    return stmt.on_conflict_do_update(constraint=UNIQUE_EXTERNAL_ID_CONSTRAINT, set_=updates)


class SqlServiceRepository(ServiceRepository):
    def __init__(
        self,
        database: AsyncDatabaseManager,
        batch_size: int = 10,
        create_tables: bool = True,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_service_id,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._db = database
        self._batch_size = batch_size
        self._create_tables = create_tables
        self._clock = clock
        self._id_factory = id_factory

    async def _ensure_ready(self) -> None:
        await self._db.prepare(Base.metadata if self._create_tables else None)

    async def _run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        await self._ensure_ready()
        try:
            return await self._db.run_in_transaction(fn)
        except IntegrityError as exc:
            raise PersistenceConflictError(str(exc.orig or exc)) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    async def ping(self) -> bool:
        async def _run(session: AsyncSession) -> bool:
            await session.execute(text("SELECT 1"))
            return True

        return await self._run(_run)

    async def list_services(
        self,
        service_type: ServiceType | None = None,
        country: str | None = None,
        source: ServiceSource | None = None,
    ) -> list[ServiceRecord]:
        async def _run(session: AsyncSession) -> list[ServiceRecord]:
            stmt = select(ServiceORM)
            if service_type is not None:
                stmt = stmt.where(ServiceORM.type == service_type.value)
            if country is not None:
                stmt = stmt.where(ServiceORM.country == country)
            if source is not None:
                stmt = stmt.where(ServiceORM.source == source.value)
            rows = (await session.scalars(stmt.order_by(ServiceORM.created_at, ServiceORM.id))).all()
            return [to_record(row) for row in rows]

        return await self._run(_run)

    async def get(self, service_id: str) -> ServiceRecord:
        async def _run(session: AsyncSession) -> ServiceRecord:
            return to_record(await self._get_row(session, service_id))

        return await self._run(_run)

    async def upsert_by_external_id(self, records: list[ServiceRecord]) -> int:
        prepared = prepare_provider_records(records)
        if not prepared:
            return 0
        rows = self._new_rows(prepared)

        async def _run(session: AsyncSession) -> int:
            for start in range(0, len(rows), self._batch_size):
                await session.execute(build_upsert_statement(rows[start : start + self._batch_size]))
            return len(rows)

        saved = await self._run(_run)
        logger.info("services_upserted", extra={"count": saved, "batch_size": self._batch_size})
        return saved

    async def replace_by_country(self, source: ServiceSource, country: str, records: list[ServiceRecord]) -> int:
        if source is ServiceSource.MANUAL:
            raise ValueError("manual records cannot be replaced by country")
        prepared = prepare_provider_records(dataclasses.replace(record, country=country) for record in records)
        if any(record.source is not source for record in prepared):
            raise ValueError(f"all records must come from {source.value}")
        rows = self._new_rows(prepared)

        async def _run(session: AsyncSession) -> int:
            await session.execute(
                delete(ServiceORM).where(ServiceORM.source == source.value, ServiceORM.country == country)
            )
            for start in range(0, len(rows), self._batch_size):
                await session.execute(insert(ServiceORM).values(rows[start : start + self._batch_size]))
            return len(rows)

        saved = await self._run(_run)
        logger.info("services_replaced", extra={"source": source.value, "country": country, "count": saved})
        return saved

    async def create_manual(self, record: ServiceRecord, owner: str) -> ServiceRecord:
        prepared = prepare_manual_record(record, owner)
        now = self._clock()
        stored = dataclasses.replace(prepared, id=self._id_factory(), created_at=now, updated_at=now)

        async def _run(session: AsyncSession) -> ServiceRecord:
            session.add(ServiceORM(**to_row(stored)))
            await session.flush()
            return stored

        return await self._run(_run)

    async def update_manual(self, service_id: str, changes: Mapping[str, Any], owner: str) -> ServiceRecord:
        async def _run(session: AsyncSession) -> ServiceRecord:
            row = await self._get_row(session, service_id)
            existing = to_record(row)
            ensure_owner(existing, owner)
            updated = dataclasses.replace(apply_changes(existing, changes), updated_at=self._clock())
            for name, value in to_row(updated).items():
                if name in (*MUTABLE_FIELDS, "updated_at"):
                    setattr(row, name, value)
            await session.flush()
            return updated

        return await self._run(_run)

    async def delete_manual(self, service_id: str, owner: str) -> None:
        async def _run(session: AsyncSession) -> None:
            row = await self._get_row(session, service_id)
            ensure_owner(to_record(row), owner)
            await session.delete(row)

        await self._run(_run)

    async def _get_row(self, session: AsyncSession, service_id: str) -> ServiceORM:
        row = await session.get(ServiceORM, service_id)
        if row is None:
            raise ServiceNotFoundError(f"service {service_id} not found")
        return row

    def _new_rows(self, records: list[ServiceRecord]) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            to_row(dataclasses.replace(record, id=self._id_factory(), created_by=None, created_at=now, updated_at=now))
            for record in records
        ]


def build_service_repository(settings: ServiceSettings) -> ServiceRepository:
    if settings.DATABASE_URL:
        return SqlServiceRepository(AsyncDatabaseManager.from_settings(settings), batch_size=settings.UPSERT_BATCH_SIZE)
    logger.warning("service_store_in_memory", extra={"service": settings.SERVICE_NAME})
    return InMemoryServiceRepository()
