from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import declared_attr

from mfgerp.database import Base

NOTE_MAX_LENGTH = 100
QUANTITY_PLACES = 3


def _utcnow() -> datetime:
    return datetime.utcnow()


class LedgerRecordMixin:
    """
    Columns shared by every batch ledger.

    ``stock_after`` holds the batch balance immediately after this record in
    ``(date, id)`` order. ``item_code`` and ``unit`` are fixed at creation.
    """

    @declared_attr
    def __table_args__(cls):
        name = cls.__tablename__
        return (
            Index(f"ix_{name}_batch_date", "batch", "date", "id"),
            Index(f"ix_{name}_item_activity", "item_code", "activity"),
        )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(DateTime, nullable=False, index=True)
    activity = Column(String(64), nullable=False, index=True)
    item_name = Column(String(128), nullable=False)
    item_code = Column(String(32), nullable=False, index=True)
    batch = Column(String(64), nullable=False, index=True)
    unit = Column(String(16), nullable=False)
    quantity = Column(Numeric(18, QUANTITY_PLACES), nullable=False)
    stock_after = Column(Numeric(18, QUANTITY_PLACES), nullable=False, default=0)
    expiry_date = Column(Date, nullable=True, index=True)
    note = Column(String(NOTE_MAX_LENGTH), nullable=True)
    document_number = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class MaterialReceiveIssueRecord(LedgerRecordMixin, Base):
    __tablename__ = "material_receive_issue"


class MaterialConsumptionRecord(LedgerRecordMixin, Base):
    __tablename__ = "material_consumption"


class ProductionMovementRecord(LedgerRecordMixin, Base):
    __tablename__ = "production_movement"


class ProductReceiveIssueRecord(LedgerRecordMixin, Base):
    __tablename__ = "product_receive_issue"


class DailySalesRecord(LedgerRecordMixin, Base):
    __tablename__ = "daily_sales"

    price = Column(Numeric(18, QUANTITY_PLACES), nullable=True)
    total_amount = Column(Numeric(18, QUANTITY_PLACES), nullable=True)
