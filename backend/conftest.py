from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.pop("DATABASE_READ_URL", None)

from mfgerp.database import Base  # noqa: E402
from mfgerp.apps.catalog import models as catalog_models  # noqa: E402
from mfgerp.apps.ledger import models as ledger_models  # noqa: E402


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(
        bind=engine,
        tables=[
            catalog_models.Product.__table__,
            catalog_models.Material.__table__,
            ledger_models.MaterialReceiveIssueRecord.__table__,
            ledger_models.MaterialConsumptionRecord.__table__,
            ledger_models.ProductionMovementRecord.__table__,
            ledger_models.ProductReceiveIssueRecord.__table__,
            ledger_models.DailySalesRecord.__table__,
        ],
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
