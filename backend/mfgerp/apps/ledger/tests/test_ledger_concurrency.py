from __future__ import annotations

import threading
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mfgerp.apps.catalog import schemas as catalog_schemas
from mfgerp.apps.catalog import services as catalog_services
from mfgerp.apps.ledger import errors, schemas, services
from mfgerp.apps.ledger.locks import BatchLockRegistry
from mfgerp.apps.ledger.services import LedgerPolicy
from mfgerp.database import Base

MATERIALS = "material_receive_issue"
POLICY = LedgerPolicy(skip_check_when_depleted=True, strict_cascade=True)


@pytest.fixture()
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    finally:
        engine.dispose()


def _payload(activity, quantity, day, **fields):
    return schemas.LedgerRecordCreate(
        activity=activity,
        item_name="Flour X",
        quantity=Decimal(quantity),
        date=day,
        document_number="DOC-1",
        **fields,
    )


def test_concurrent_issues_on_one_batch_cannot_overdraw(file_session_factory):
    locks = BatchLockRegistry()
    setup = file_session_factory()
    try:
        catalog_services.create_material(
            setup,
            payload=catalog_schemas.MaterialCreate(name="Flour X", code="X1", unit="KG"),
        )
        services.create_ledger_record(
            setup,
            ledger=MATERIALS,
            payload=_payload("Receive", 100, datetime(2024, 1, 1), expiry_date=date(2025, 1, 1)),
            policy=POLICY,
            locks=locks,
        )
    finally:
        setup.close()

    barrier = threading.Barrier(2)
    outcomes = []
    outcomes_guard = threading.Lock()

    def _issue(day):
        session = file_session_factory()
        try:
            barrier.wait(timeout=5)
            try:
                services.create_ledger_record(
                    session,
                    ledger=MATERIALS,
                    payload=_payload("Issue", 60, datetime(2024, 1, day), batch="X1-010124"),
                    policy=POLICY,
                    locks=locks,
                )
                result = "ok"
            except errors.InsufficientStock as exc:
                result = exc.code
            with outcomes_guard:
                outcomes.append(result)
        finally:
            session.close()

    workers = [threading.Thread(target=_issue, args=(day,)) for day in (2, 3)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=30)

    assert sorted(outcomes) == ["insufficient_stock", "ok"]

    check = file_session_factory()
    try:
        assert services.get_batch_stock(check, ledger=MATERIALS, batch="X1-010124") == Decimal("40")
    finally:
        check.close()
    assert len(locks) == 0


class _RecordingDb:
    def __init__(self, dialect):
        self.dialect = dialect
        self.calls = []

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name=self.dialect))

    def execute(self, statement, params=None):
        self.calls.append((str(statement), params))


def test_postgres_writes_take_advisory_locks_in_batch_order():
    db = _RecordingDb("postgresql")

    services._hold_database_locks(db, "daily_sales", ["P1-020124", "P1-010124", "P1-020124", None])

    assert [params["key"] for _sql, params in db.calls] == ["daily_sales:P1-010124", "daily_sales:P1-020124"]
    assert all("pg_advisory_xact_lock" in sql for sql, _params in db.calls)


def test_other_databases_skip_advisory_locks():
    db = _RecordingDb("sqlite")

    services._hold_database_locks(db, "daily_sales", ["P1-010124"])

    assert db.calls == []
