from __future__ import annotations

from datetime import datetime, timezone
from itertools import count

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from service_pipeline.core.exceptions import (
    OwnershipError,
    PersistenceConflictError,
    PersistenceError,
    ServiceNotFoundError,
)
from service_pipeline.core.models import ServiceRecord, ServiceSource, ServiceType
from service_pipeline.jobs.sql_store import ServiceORM, SqlServiceRepository, build_upsert_statement, to_row

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeScalarResult:
    def __init__(self, rows) -> None:
        self._rows = rows

    def all(self):
        return list(self._rows)


class FakeSession:
    def __init__(self, rows: dict[str, ServiceORM] | None = None, fail_on_execute: int | None = None, error=None) -> None:
        self.rows = rows or {}
        self.statements = []
        self.added = []
        self.deleted = []
        self.flushed = 0
        self._fail_on_execute = fail_on_execute
        self._error = error

    async def execute(self, stmt, params=None):
        self.statements.append(stmt)
        if self._fail_on_execute is not None and len(self.statements) == self._fail_on_execute:
            raise self._error
        return None

    async def scalars(self, stmt):
        self.statements.append(stmt)
        return FakeScalarResult(self.rows.values())

    async def get(self, _model, key):
        return self.rows.get(key)

    def add(self, row) -> None:
        self.added.append(row)

    async def delete(self, row) -> None:
        self.deleted.append(row)

    async def flush(self) -> None:
        self.flushed += 1


class FakeDatabase:
    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.prepared = []
        self.transactions = 0

    async def prepare(self, metadata=None) -> None:
        self.prepared.append(metadata)

    async def run_in_transaction(self, fn):
        self.transactions += 1
        return await fn(self.session)


def build_repository(session: FakeSession, batch_size: int = 10) -> tuple[SqlServiceRepository, FakeDatabase]:
    database = FakeDatabase(session)
    ids = count(1)
    repository = SqlServiceRepository(
        database,
        batch_size=batch_size,
        create_tables=False,
        clock=lambda: NOW,
        id_factory=lambda: f"svc-{next(ids)}",
    )
    return repository, database


def provider_record(external_id: str, source: ServiceSource = ServiceSource.GOOGLE_PLACES) -> ServiceRecord:
    return ServiceRecord(
        name=f"Place {external_id}",
        type=ServiceType.CLINIC,
        address="Nairobi",
        latitude=-1.28,
        longitude=36.82,
        source=source,
        external_id=external_id,
        country="Kenya",
    )


def manual_row(service_id: str, owner: str) -> ServiceORM:
    record = ServiceRecord(
        id=service_id,
        name="Manual Clinic",
        type=ServiceType.CLINIC,
        address="Nairobi",
        latitude=-1.28,
        longitude=36.82,
        source=ServiceSource.MANUAL,
        country="Kenya",
        created_by=owner,
        created_at=NOW,
        updated_at=NOW,
    )
    return ServiceORM(**to_row(record))


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_upsert_statement_targets_unique_constraint_and_keeps_identity() -> None:
    rows = [to_row(provider_record("p1"))]

    sql = compiled(build_upsert_statement(rows))

    assert "ON CONFLICT ON CONSTRAINT uq_services_source_external_id DO UPDATE" in sql
    set_clause = sql.split("DO UPDATE SET", 1)[1]
    assert "name = excluded.name" in set_clause
    assert "updated_at = excluded.updated_at" in set_clause
    assert "created_at" not in set_clause
    assert "created_by" not in set_clause
    assert "id = excluded.id" not in set_clause


@pytest.mark.asyncio
async def test_upsert_splits_batches_inside_one_transaction() -> None:
    session = FakeSession()
    repository, database = build_repository(session, batch_size=2)

    saved = await repository.upsert_by_external_id([provider_record(f"p{idx}") for idx in range(5)])

    assert saved == 5
    assert database.transactions == 1
    assert database.prepared == [None]
    assert len(session.statements) == 3
    assert all("ON CONFLICT" in compiled(stmt) for stmt in session.statements)


@pytest.mark.asyncio
async def test_upsert_maps_constraint_violation_to_conflict() -> None:
    session = FakeSession(fail_on_execute=2, error=IntegrityError("INSERT", {}, Exception("violates check constraint")))
    repository, _ = build_repository(session, batch_size=1)

    with pytest.raises(PersistenceConflictError):
        await repository.upsert_by_external_id([provider_record("p1"), provider_record("p2")])


@pytest.mark.asyncio
async def test_upsert_maps_store_failure_to_persistence_error() -> None:
    session = FakeSession(fail_on_execute=1, error=OperationalError("INSERT", {}, Exception("server closed")))
    repository, _ = build_repository(session)

    with pytest.raises(PersistenceError) as exc_info:
        await repository.upsert_by_external_id([provider_record("p1")])

    assert not isinstance(exc_info.value, PersistenceConflictError)


@pytest.mark.asyncio
async def test_upsert_skips_empty_input() -> None:
    session = FakeSession()
    repository, database = build_repository(session)

    assert await repository.upsert_by_external_id([]) == 0
    assert database.transactions == 0


@pytest.mark.asyncio
async def test_replace_by_country_deletes_then_inserts() -> None:
    session = FakeSession()
    repository, database = build_repository(session, batch_size=10)

    saved = await repository.replace_by_country(
        ServiceSource.OSM,
        "Kenya",
        [provider_record("node/1", ServiceSource.OSM), provider_record("node/2", ServiceSource.OSM)],
    )

    assert saved == 2
    assert database.transactions == 1
    delete_sql = compiled(session.statements[0])
    assert delete_sql.startswith("DELETE FROM services")
    assert "services.source =" in delete_sql
    assert "services.country =" in delete_sql
    assert compiled(session.statements[1]).startswith("INSERT INTO services")


@pytest.mark.asyncio
async def test_replace_by_country_rejects_mixed_sources() -> None:
    repository, _ = build_repository(FakeSession())

    with pytest.raises(ValueError):
        await repository.replace_by_country(ServiceSource.OSM, "Kenya", [provider_record("g1")])


@pytest.mark.asyncio
async def test_create_manual_adds_owned_row() -> None:
    session = FakeSession()
    repository, _ = build_repository(session)
    record = ServiceRecord(
        name="Legal Desk",
        type=ServiceType.LEGAL,
        address="Athens",
        latitude=37.98,
        longitude=23.72,
        source=ServiceSource.MANUAL,
        languages=("Greek", "English"),
    )

    created = await repository.create_manual(record, owner="user-1")

    assert created.id == "svc-1"
    assert created.created_by == "user-1"
    assert session.added[0].languages == ["greek", "en"]
    assert session.added[0].source == "manual"


@pytest.mark.asyncio
async def test_update_manual_checks_owner_and_updates_row() -> None:
    row = manual_row("svc-9", owner="user-1")
    session = FakeSession(rows={"svc-9": row})
    repository, _ = build_repository(session)

    with pytest.raises(OwnershipError):
        await repository.update_manual("svc-9", {"name": "Other"}, owner="user-2")

    updated = await repository.update_manual("svc-9", {"name": "Renamed"}, owner="user-1")

    assert updated.name == "Renamed"
    assert row.name == "Renamed"
    assert row.created_by == "user-1"


@pytest.mark.asyncio
async def test_delete_manual_raises_for_unknown_id() -> None:
    repository, _ = build_repository(FakeSession())

    with pytest.raises(ServiceNotFoundError):
        await repository.delete_manual("missing", owner="user-1")


@pytest.mark.asyncio
async def test_delete_manual_removes_owned_row() -> None:
    row = manual_row("svc-9", owner="user-1")
    session = FakeSession(rows={"svc-9": row})
    repository, _ = build_repository(session)

    await repository.delete_manual("svc-9", owner="user-1")

    assert session.deleted == [row]


@pytest.mark.asyncio
async def test_list_services_maps_rows_to_records() -> None:
    session = FakeSession(rows={"svc-1": manual_row("svc-1", owner="user-1")})
    repository, _ = build_repository(session)

    rows = await repository.list_services(ServiceType.CLINIC, "Kenya", ServiceSource.MANUAL)

    assert rows[0].source is ServiceSource.MANUAL
    assert rows[0].type is ServiceType.CLINIC
    sql = compiled(session.statements[0])
    assert "services.type =" in sql
    assert "ORDER BY services.created_at, services.id" in sql
