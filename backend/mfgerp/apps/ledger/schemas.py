from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import QUANTITY_PLACES


def _naive_utc(value):
    if isinstance(value, dt.datetime) and value.tzinfo is not None:
        return value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


class LedgerRecordCreate(BaseModel):
    date: Optional[dt.datetime] = None
    activity: str = Field(..., min_length=1, max_length=64)
    item_name: str = Field(..., min_length=1, max_length=128)
    batch: Optional[str] = Field(None, max_length=64)
    quantity: Decimal = Field(..., gt=0, decimal_places=QUANTITY_PLACES)
    expiry_date: Optional[dt.date] = None
    note: Optional[str] = None
    document_number: Optional[str] = Field(None, max_length=64)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=QUANTITY_PLACES)

    @field_validator("date", mode="after")
    @classmethod
    def _date_to_naive_utc(cls, value):
        return _naive_utc(value)

    @field_validator("batch", "document_number", "item_name", "activity", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class LedgerRecordBulkCreate(BaseModel):
    records: List[LedgerRecordCreate] = Field(..., min_length=1, max_length=500)


class LedgerRecordUpdate(BaseModel):
    """Business-mutable fields only; ``item_code`` and ``unit`` are never taken from an update."""

    date: Optional[dt.datetime] = None
    activity: Optional[str] = Field(None, min_length=1, max_length=64)
    item_name: Optional[str] = Field(None, min_length=1, max_length=128)
    batch: Optional[str] = Field(None, max_length=64)
    quantity: Optional[Decimal] = Field(None, gt=0, decimal_places=QUANTITY_PLACES)
    expiry_date: Optional[dt.date] = None
    note: Optional[str] = None
    document_number: Optional[str] = Field(None, max_length=64)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=QUANTITY_PLACES)

    @field_validator("date", mode="after")
    @classmethod
    def _date_to_naive_utc(cls, value):
        return _naive_utc(value)

    @field_validator("batch", "document_number", "item_name", "activity", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class LedgerRecordRead(BaseModel):
    id: int
    date: dt.datetime
    activity: str
    item_name: str
    item_code: str
    batch: str
    unit: str
    quantity: Decimal
    stock_after: Decimal
    expiry_date: Optional[dt.date] = None
    note: Optional[str] = None
    document_number: str
    price: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class BatchAvailabilityRead(BaseModel):
    batch: str
    available_quantity: Decimal
    expiry_date: Optional[dt.date] = None
    source_activity: str
    is_available: bool
    upstream_quantity: Decimal
    consumed_quantity: Decimal
    unit: Optional[str] = None
    last_transaction_date: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class BatchStockRead(BaseModel):
    ledger: str
    batch: str
    stock: Decimal


class StockSummaryRow(BaseModel):
    item_code: str
    item_name: str
    unit: str
    total_stock: Decimal
    batch_count: int


class ExpiringBatchRead(BaseModel):
    batch: str
    item_code: str
    item_name: str
    expiry_date: dt.date
    days_to_expiry: int
    stock: Decimal


class ActivityRead(BaseModel):
    name: str
    direction: str
    requires_expiry: bool
    auto_batch: bool
    manual_batch: bool
    requires_price: bool
    upstream_ledger: Optional[str] = None
    upstream_activities: List[str] = []


class LedgerActivitiesRead(BaseModel):
    ledger: str
    label: str
    item_kind: str
    activities: List[ActivityRead]


class BatchTraceEntry(BaseModel):
    ledger: str
    record: LedgerRecordRead


class BatchTraceRead(BaseModel):
    batch: str
    entries: List[BatchTraceEntry]


class StockStatusEnum(str, enum.Enum):
    OUT_OF_STOCK = "Out of Stock"
    LOW_STOCK = "Low Stock"
    OVERSTOCK = "Overstock"
    NORMAL = "Normal"


class StockValuationRow(BaseModel):
    item_code: str
    item_name: str
    unit: str
    current_stock: Decimal
    unit_price: Optional[Decimal] = None
    total_value: Decimal
    minimum_stock: Optional[Decimal] = None
    maximum_stock: Optional[Decimal] = None
    reorder_quantity: Optional[Decimal] = None
    status: StockStatusEnum


class StockValuationRead(BaseModel):
    ledger: str
    items: List[StockValuationRow] = []
    total_valuation: Decimal = Decimal("0")
    total_items: int = 0
    low_stock_items: int = 0
    out_of_stock_items: int = 0
