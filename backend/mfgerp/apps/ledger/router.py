from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from mfgerp.database import get_read_db, get_write_db

from . import schemas, services
from .activities import get_ledger
from .errors import LedgerError

router = APIRouter(prefix="/ledgers", tags=["ledgers"])


def _item_cache(request: Request):
    return getattr(request.app.state, "item_cache", None)


def _batch_locks(request: Request):
    return getattr(request.app.state, "batch_locks", None)


def _http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


# Static paths first so they are not captured by "/{ledger}/...".
@router.get("/batches/{batch}/trace", response_model=schemas.BatchTraceRead)
def trace_batch(batch: str, db: Session = Depends(get_read_db)):
    entries = services.trace_batch(db, batch=batch)
    return schemas.BatchTraceRead(
        batch=batch,
        entries=[
            schemas.BatchTraceEntry(ledger=key, record=schemas.LedgerRecordRead.model_validate(record))
            for key, record in entries
        ],
    )


@router.get("/{ledger}/activities", response_model=schemas.LedgerActivitiesRead)
def list_activities(ledger: str):
    try:
        config = get_ledger(ledger)
    except LedgerError as exc:
        raise _http_error(exc)
    return schemas.LedgerActivitiesRead(
        ledger=config.key,
        label=config.label,
        item_kind=config.item_kind.value,
        activities=[
            schemas.ActivityRead(
                name=spec.name,
                direction=spec.direction.value,
                requires_expiry=spec.requires_expiry,
                auto_batch=spec.auto_batch,
                manual_batch=spec.manual_batch,
                requires_price=spec.requires_price,
                upstream_ledger=spec.upstream.ledger if spec.upstream else None,
                upstream_activities=list(spec.upstream.activities) if spec.upstream else [],
            )
            for spec in config.activities
        ],
    )


@router.post(
    "/{ledger}/records",
    response_model=schemas.LedgerRecordRead,
    status_code=status.HTTP_201_CREATED,
)
def create_record(
    ledger: str,
    payload: schemas.LedgerRecordCreate,
    request: Request,
    db: Session = Depends(get_write_db),
):
    try:
        return services.create_ledger_record(
            db,
            ledger=ledger,
            payload=payload,
            cache=_item_cache(request),
            locks=_batch_locks(request),
        )
    except LedgerError as exc:
        raise _http_error(exc)


@router.post(
    "/{ledger}/records/bulk",
    response_model=List[schemas.LedgerRecordRead],
    status_code=status.HTTP_201_CREATED,
)
def create_records_bulk(
    ledger: str,
    payload: schemas.LedgerRecordBulkCreate,
    request: Request,
    db: Session = Depends(get_write_db),
):
    try:
        return services.create_ledger_records(
            db,
            ledger=ledger,
            payloads=payload.records,
            cache=_item_cache(request),
            locks=_batch_locks(request),
        )
    except LedgerError as exc:
        raise _http_error(exc)


@router.get("/{ledger}/records", response_model=List[schemas.LedgerRecordRead])
def list_records(
    ledger: str,
    item_name: Optional[str] = Query(None),
    item_code: Optional[str] = Query(None),
    batch: Optional[str] = Query(None),
    activity: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
):
    try:
        return services.list_ledger_records(
            db,
            ledger=ledger,
            item_name=item_name,
            item_code=item_code,
            batch=batch,
            activity=activity,
            skip=skip,
            limit=limit,
        )
    except LedgerError as exc:
        raise _http_error(exc)


@router.get("/{ledger}/records/{record_id}", response_model=schemas.LedgerRecordRead)
def get_record(ledger: str, record_id: int, db: Session = Depends(get_read_db)):
    try:
        return services.get_ledger_record(db, ledger=ledger, record_id=record_id)
    except LedgerError as exc:
        raise _http_error(exc)


@router.put("/{ledger}/records/{record_id}", response_model=schemas.LedgerRecordRead)
def update_record(
    ledger: str,
    record_id: int,
    payload: schemas.LedgerRecordUpdate,
    request: Request,
    db: Session = Depends(get_write_db),
):
    try:
        return services.update_ledger_record(
            db,
            ledger=ledger,
            record_id=record_id,
            payload=payload,
            cache=_item_cache(request),
            locks=_batch_locks(request),
        )
    except LedgerError as exc:
        raise _http_error(exc)


@router.delete("/{ledger}/records/{record_id}", response_model=schemas.LedgerRecordRead)
def delete_record(
    ledger: str,
    record_id: int,
    request: Request,
    db: Session = Depends(get_write_db),
):
    try:
        return services.delete_ledger_record(
            db,
            ledger=ledger,
            record_id=record_id,
            cache=_item_cache(request),
            locks=_batch_locks(request),
        )
    except LedgerError as exc:
        raise _http_error(exc)


@router.get("/{ledger}/batches/available", response_model=List[schemas.BatchAvailabilityRead])
def available_batches(
    ledger: str,
    request: Request,
    item_name: str = Query(..., min_length=1),
    activity: str = Query(..., min_length=1),
    db: Session = Depends(get_read_db),
):
    try:
        return services.get_available_batches(
            db,
            ledger=ledger,
            item_name=item_name,
            activity=activity,
            cache=_item_cache(request),
        )
    except LedgerError as exc:
        raise _http_error(exc)


@router.get("/{ledger}/stock/{batch}", response_model=schemas.BatchStockRead)
def batch_stock(ledger: str, batch: str, db: Session = Depends(get_read_db)):
    try:
        stock = services.get_batch_stock(db, ledger=ledger, batch=batch)
    except LedgerError as exc:
        raise _http_error(exc)
    return schemas.BatchStockRead(ledger=ledger, batch=batch, stock=stock)


@router.get("/{ledger}/stock-summary", response_model=List[schemas.StockSummaryRow])
def stock_summary(ledger: str, db: Session = Depends(get_read_db)):
    try:
        return services.stock_summary(db, ledger=ledger)
    except LedgerError as exc:
        raise _http_error(exc)


@router.get("/{ledger}/stock-valuation", response_model=schemas.StockValuationRead)
def stock_valuation(ledger: str, db: Session = Depends(get_read_db)):
    try:
        return services.stock_valuation(db, ledger=ledger)
    except LedgerError as exc:
        raise _http_error(exc)


@router.get("/{ledger}/alerts/expiring", response_model=List[schemas.ExpiringBatchRead])
def expiring_batches(
    ledger: str,
    days: int = Query(30, ge=0, le=3650),
    db: Session = Depends(get_read_db),
):
    try:
        return services.expiring_batches(db, ledger=ledger, days=days)
    except LedgerError as exc:
        raise _http_error(exc)
