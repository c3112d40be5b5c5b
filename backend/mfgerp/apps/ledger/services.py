"""
Ledger record lifecycle: create, update and delete with batch validation and
``stock_after`` maintenance, plus the read-side helpers the router exposes.

Write paths fail closed: any lookup or query error rejects the operation.
Read helpers (stock, summaries, alerts, traces) fail open and log.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mfgerp.apps.catalog import models as catalog_models
from mfgerp.apps.catalog import services as catalog_services
from mfgerp.apps.catalog.cache import ItemCache

from . import batches as batch_resolver
from . import schemas
from .activities import LEDGERS, ActivitySpec, LedgerConfig, get_ledger
from .errors import (
    BatchNotAvailableForActivity,
    BatchRequired,
    BulkRecordsRejected,
    DocumentNumberRequired,
    DuplicateEntry,
    ExpiryBeforeTransactionDate,
    ExpiryDateRequired,
    FutureTransactionDate,
    InsufficientBatchQuantity,
    InsufficientStock,
    InvalidBatchFormat,
    LedgerError,
    PriceRequired,
    RecordNotFound,
    ReferencedItemNotFound,
)
from .locks import BatchLockRegistry, default_registry
from .models import NOTE_MAX_LENGTH, QUANTITY_PLACES
from .stock import (
    ZERO,
    batch_records,
    compute_running_stock,
    first_negative,
    fold,
    signed_quantity,
    signed_quantity_expr,
    timeline_key,
    to_decimal,
)

logger = logging.getLogger(__name__)

AMOUNT_QUANTUM = Decimal(1).scaleb(-QUANTITY_PLACES)
MONEY_QUANTUM = Decimal("0.01")

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Behaviour switches for the write path.

    skip_check_when_depleted:
        When the selected upstream batch already shows zero or less available,
        do not reject the request for exceeding it. Own-batch stock is still
        enforced.
    strict_cascade:
        A failure while rewriting later ``stock_after`` values rolls back the
        whole write. When off, the rewrite runs in a savepoint and a failure
        is logged while the triggering write is kept.
    """

    skip_check_when_depleted: bool = True
    strict_cascade: bool = True

    @classmethod
    def from_env(cls) -> "LedgerPolicy":
        return cls(
            skip_check_when_depleted=_env_flag("LEDGER_SKIP_CHECK_WHEN_DEPLETED", True),
            strict_cascade=_env_flag("LEDGER_STRICT_CASCADE", True),
        )


@dataclass
class _TimelineEntry:
    id: Optional[int]
    date: datetime
    activity: str
    quantity: Decimal


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------


def auto_batch_id(item_code: str, when: datetime) -> str:
    return f"{item_code}-{when:%d%m%y}"


def validate_manual_batch(batch: Optional[str], item_code: str, activity: str) -> str:
    if not batch:
        raise BatchRequired(activity)
    prefix = f"{item_code}-"
    if not batch.startswith(prefix) or len(batch) <= len(prefix):
        raise InvalidBatchFormat(batch, item_code)
    return batch


def truncate_note(note: Optional[str]) -> Optional[str]:
    if note is None:
        return None
    return note[:NOTE_MAX_LENGTH]


def _check_transaction_date(when: datetime) -> None:
    if when > _utcnow():
        raise FutureTransactionDate()


def _clean_document_number(value: Optional[str]) -> str:
    document_number = (value or "").strip()
    if not document_number:
        raise DocumentNumberRequired()
    return document_number


def _resolve_batch(spec: ActivitySpec, item_code: str, when: datetime, batch: Optional[str]) -> str:
    if spec.manual_batch:
        return validate_manual_batch(batch, item_code, spec.name)
    if not batch:
        if spec.auto_batch:
            return auto_batch_id(item_code, when)
        raise BatchRequired(spec.name)
    return batch


def _check_upstream(
    db: Session,
    *,
    config: LedgerConfig,
    spec: ActivitySpec,
    item_code: str,
    batch: str,
    quantity: Decimal,
    policy: LedgerPolicy,
    exclude_record_id: Optional[int] = None,
) -> Optional[batch_resolver.BatchAvailability]:
    if spec.upstream is None:
        return None

    candidates = batch_resolver.resolve_available_batches(
        db,
        config=config,
        activity=spec.name,
        item_code=item_code,
        exclude_record_id=exclude_record_id,
    )
    selected = next((candidate for candidate in candidates if candidate.batch == batch), None)
    if selected is None:
        raise BatchNotAvailableForActivity(batch, spec.name)

    available = selected.available_quantity
    if available < quantity:
        if available > ZERO or not policy.skip_check_when_depleted:
            raise InsufficientBatchQuantity(batch, available, quantity)
        logger.warning(
            "Upstream batch already depleted; quantity check skipped",
            extra={"ledger": config.key, "activity": spec.name, "batch": batch, "available": str(available)},
        )
    return selected


def _resolve_expiry(
    spec: ActivitySpec,
    expiry: Optional[date],
    when: datetime,
    selected: Optional[batch_resolver.BatchAvailability],
) -> Optional[date]:
    if not spec.requires_expiry:
        return expiry
    if expiry is None and selected is not None:
        expiry = selected.expiry_date
    if expiry is None:
        raise ExpiryDateRequired(spec.name)
    if expiry < when.date():
        raise ExpiryBeforeTransactionDate()
    return expiry


def _check_price(spec: ActivitySpec, price: Optional[Decimal]) -> None:
    if spec.requires_price and price is None:
        raise PriceRequired(spec.name)


def _apply_price(config: LedgerConfig, record, price: Optional[Decimal]) -> None:
    if not config.has_price:
        return
    record.price = price
    if price is None:
        record.total_amount = None
        return
    amount = to_decimal(price) * to_decimal(record.quantity)
    record.total_amount = amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def _check_timeline(config: LedgerConfig, batch: str, entries: Iterable) -> None:
    ordered = sorted(entries, key=timeline_key)
    hit = first_negative(config, ordered)
    if hit is None:
        return
    index, available = hit
    raise InsufficientStock(batch, available, to_decimal(ordered[index].quantity))


# ---------------------------------------------------------------------------
# stock_after maintenance
# ---------------------------------------------------------------------------


def _cascade_forward(db: Session, config: LedgerConfig, record) -> int:
    """Rewrite ``stock_after`` on every record that follows ``record`` in its batch."""
    anchor = timeline_key(record)
    running = to_decimal(record.stock_after)
    changed = 0
    for later in batch_records(db, config, record.batch):
        if timeline_key(later) <= anchor:
            continue
        running = max(ZERO, running + signed_quantity(config, later.activity, later.quantity))
        if to_decimal(later.stock_after) != running:
            later.stock_after = running
            changed += 1
    db.flush()
    return changed


def refold_batch(db: Session, config: LedgerConfig, batch: str) -> int:
    """Recompute ``stock_after`` for a whole batch from a zero opening balance."""
    records = batch_records(db, config, batch)
    changed = 0
    for record, balance in zip(records, fold(config, records)):
        if record.stock_after is None or to_decimal(record.stock_after) != balance:
            record.stock_after = balance
            changed += 1
    db.flush()
    return changed


def _run_cascade(db: Session, config: LedgerConfig, policy: LedgerPolicy, batch: str, step: Callable[[], int]) -> None:
    if policy.strict_cascade:
        step()
        return
    try:
        with db.begin_nested():
            step()
    except SQLAlchemyError:
        logger.error(
            "Stock recalculation failed; stored balances for the batch may be stale",
            exc_info=True,
            extra={"ledger": config.key, "batch": batch},
        )


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateEntry("A matching ledger record already exists.") from exc


def _snapshot(record) -> Dict[str, object]:
    return {column.name: getattr(record, column.name) for column in record.__table__.columns}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _hold_database_locks(db: Session, ledger: str, batches: Iterable[str]) -> None:
    """Transaction-scoped advisory locks so separate worker processes serialize per batch."""
    if db.get_bind().dialect.name != "postgresql":
        return
    for batch in sorted({batch for batch in batches if batch}):
        db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": f"{ledger}:{batch}"})


@dataclass
class _PreparedCreate:
    spec: ActivitySpec
    when: datetime
    document_number: str
    item: catalog_services.ItemInfo
    batch: str
    quantity: Decimal
    payload: schemas.LedgerRecordCreate


def _prepare_create(
    db: Session,
    config: LedgerConfig,
    payload: schemas.LedgerRecordCreate,
    cache: Optional[ItemCache],
) -> _PreparedCreate:
    spec = config.activity(payload.activity)
    when = payload.date or _utcnow()
    _check_transaction_date(when)
    document_number = _clean_document_number(payload.document_number)
    _check_price(spec, payload.price)

    item = catalog_services.resolve_item(db, kind=config.item_kind, name=payload.item_name, cache=cache)
    if item is None:
        raise ReferencedItemNotFound(config.item_kind.value, payload.item_name)

    return _PreparedCreate(
        spec=spec,
        when=when,
        document_number=document_number,
        item=item,
        batch=_resolve_batch(spec, item.code, when, payload.batch),
        quantity=to_decimal(payload.quantity),
        payload=payload,
    )


def _insert_record(db: Session, config: LedgerConfig, prepared: _PreparedCreate, policy: LedgerPolicy):
    """Validate against current batch state, add the record and cascade. Does not commit."""
    spec = prepared.spec
    payload = prepared.payload
    batch = prepared.batch

    selected = _check_upstream(
        db,
        config=config,
        spec=spec,
        item_code=prepared.item.code,
        batch=batch,
        quantity=prepared.quantity,
        policy=policy,
    )
    expiry = _resolve_expiry(spec, payload.expiry_date, prepared.when, selected)

    record = config.model(
        date=prepared.when,
        activity=spec.name,
        item_name=prepared.item.name,
        item_code=prepared.item.code,
        batch=batch,
        unit=prepared.item.unit,
        quantity=prepared.quantity,
        expiry_date=expiry,
        note=truncate_note(payload.note),
        document_number=prepared.document_number,
    )
    _apply_price(config, record, payload.price)

    timeline = sorted(batch_records(db, config, batch) + [record], key=timeline_key)
    if not spec.is_increasing:
        _check_timeline(config, batch, timeline)

    prior = timeline[: timeline.index(record)]
    opening = fold(config, prior)[-1] if prior else ZERO
    record.stock_after = max(ZERO, opening + signed_quantity(config, spec.name, prepared.quantity))

    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateEntry("A matching ledger record already exists.") from exc

    _run_cascade(db, config, policy, batch, lambda: _cascade_forward(db, config, record))
    return record


def create_ledger_record(
    db: Session,
    *,
    ledger: str,
    payload: schemas.LedgerRecordCreate,
    cache: Optional[ItemCache] = None,
    policy: Optional[LedgerPolicy] = None,
    locks: Optional[BatchLockRegistry] = None,
):
    config = get_ledger(ledger)
    policy = policy or LedgerPolicy.from_env()
    locks = locks or default_registry

    prepared = _prepare_create(db, config, payload, cache)

    with locks.hold(config.key, prepared.batch):
        try:
            _hold_database_locks(db, config.key, [prepared.batch])
            record = _insert_record(db, config, prepared, policy)
            _commit(db)
        except SQLAlchemyError:
            db.rollback()
            raise

    catalog_services.invalidate_item(cache, kind=config.item_kind, name=prepared.item.name)
    db.refresh(record)
    logger.info(
        "Ledger record created",
        extra={"ledger": config.key, "record_id": record.id, "activity": prepared.spec.name, "batch": prepared.batch},
    )
    return record


def _failure(index: int, exc: LedgerError) -> dict:
    return {"index": index, "code": exc.code, "message": exc.message, "status_code": exc.status_code}


def create_ledger_records(
    db: Session,
    *,
    ledger: str,
    payloads: List[schemas.LedgerRecordCreate],
    cache: Optional[ItemCache] = None,
    policy: Optional[LedgerPolicy] = None,
    locks: Optional[BatchLockRegistry] = None,
):
    """
    Create several records in one transaction, in the order given.

    Field rules and item lookups are checked for every record first and all
    failures are reported together. Records are then inserted one by one so
    later entries see the stock written by earlier ones; any failure rolls
    back the whole set.
    """
    config = get_ledger(ledger)
    policy = policy or LedgerPolicy.from_env()
    locks = locks or default_registry

    prepared: List[_PreparedCreate] = []
    failures: List[dict] = []
    for index, payload in enumerate(payloads):
        try:
            prepared.append(_prepare_create(db, config, payload, cache))
        except LedgerError as exc:
            failures.append(_failure(index, exc))
    if failures:
        raise BulkRecordsRejected(failures)

    batches = [entry.batch for entry in prepared]
    records = []
    with locks.hold(config.key, *batches):
        try:
            _hold_database_locks(db, config.key, batches)
            for index, entry in enumerate(prepared):
                try:
                    records.append(_insert_record(db, config, entry, policy))
                except LedgerError as exc:
                    db.rollback()
                    raise BulkRecordsRejected([_failure(index, exc)]) from exc
            _commit(db)
        except SQLAlchemyError:
            db.rollback()
            raise

    for name in {entry.item.name for entry in prepared}:
        catalog_services.invalidate_item(cache, kind=config.item_kind, name=name)
    for record in records:
        db.refresh(record)
    logger.info(
        "Ledger records created in bulk",
        extra={"ledger": config.key, "count": len(records), "batches": sorted(set(batches))},
    )
    return records


def update_ledger_record(
    db: Session,
    *,
    ledger: str,
    record_id: int,
    payload: schemas.LedgerRecordUpdate,
    cache: Optional[ItemCache] = None,
    policy: Optional[LedgerPolicy] = None,
    locks: Optional[BatchLockRegistry] = None,
):
    """
    Apply business-field changes to one record.

    ``item_code`` and ``unit`` stay as they were at creation. Both the target
    batch and, when the batch changed, the previous one are re-folded from
    zero after the write.
    """
    config = get_ledger(ledger)
    policy = policy or LedgerPolicy.from_env()
    locks = locks or default_registry

    record = db.get(config.model, record_id)
    if record is None:
        raise RecordNotFound(config.key, record_id)

    changes = payload.model_dump(exclude_unset=True)
    changes.pop("item_code", None)
    changes.pop("unit", None)

    spec = config.activity(changes.get("activity") or record.activity)
    when = changes.get("date") or record.date
    _check_transaction_date(when)
    if "document_number" in changes:
        document_number = _clean_document_number(changes["document_number"])
    else:
        document_number = record.document_number
    quantity = to_decimal(changes.get("quantity") or record.quantity)
    price = changes["price"] if "price" in changes else getattr(record, "price", None)
    _check_price(spec, price)

    old_batch = record.batch
    batch = changes.get("batch") or old_batch
    if spec.manual_batch:
        validate_manual_batch(batch, record.item_code, spec.name)

    old_item_name = record.item_name
    item_name = changes.get("item_name") or old_item_name

    with locks.hold(config.key, old_batch, batch):
        try:
            _hold_database_locks(db, config.key, [old_batch, batch])
            selected = _check_upstream(
                db,
                config=config,
                spec=spec,
                item_code=record.item_code,
                batch=batch,
                quantity=quantity,
                policy=policy,
                exclude_record_id=record.id,
            )
            expiry = changes["expiry_date"] if "expiry_date" in changes else record.expiry_date
            expiry = _resolve_expiry(spec, expiry, when, selected)

            pending = _TimelineEntry(id=record.id, date=when, activity=spec.name, quantity=quantity)
            _check_timeline(config, batch, batch_records(db, config, batch, exclude_id=record.id) + [pending])
            if batch != old_batch:
                _check_timeline(config, old_batch, batch_records(db, config, old_batch, exclude_id=record.id))

            record.date = when
            record.activity = spec.name
            record.item_name = item_name
            record.batch = batch
            record.quantity = quantity
            record.expiry_date = expiry
            if "note" in changes:
                record.note = truncate_note(changes["note"])
            record.document_number = document_number
            _apply_price(config, record, price)

            try:
                db.flush()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateEntry("A matching ledger record already exists.") from exc

            touched = sorted({old_batch, batch})
            _run_cascade(
                db,
                config,
                policy,
                batch,
                lambda: sum(refold_batch(db, config, name) for name in touched),
            )
            _commit(db)
        except SQLAlchemyError:
            db.rollback()
            raise

    for name in {old_item_name, item_name}:
        catalog_services.invalidate_item(cache, kind=config.item_kind, name=name)
    db.refresh(record)
    logger.info(
        "Ledger record updated",
        extra={"ledger": config.key, "record_id": record.id, "batch": batch, "previous_batch": old_batch},
    )
    return record


def delete_ledger_record(
    db: Session,
    *,
    ledger: str,
    record_id: int,
    cache: Optional[ItemCache] = None,
    policy: Optional[LedgerPolicy] = None,
    locks: Optional[BatchLockRegistry] = None,
) -> Dict[str, object]:
    """
    Physically remove a record and re-fold its batch.

    Returns the removed record's column values. Removing a stock-increasing
    record is refused when later movements in the batch would go negative.
    """
    config = get_ledger(ledger)
    policy = policy or LedgerPolicy.from_env()
    locks = locks or default_registry

    record = db.get(config.model, record_id)
    if record is None:
        raise RecordNotFound(config.key, record_id)
    batch = record.batch

    with locks.hold(config.key, batch):
        try:
            _hold_database_locks(db, config.key, [batch])
            _check_timeline(config, batch, batch_records(db, config, batch, exclude_id=record.id))
            snapshot = _snapshot(record)
            db.delete(record)
            db.flush()
            _run_cascade(db, config, policy, batch, lambda: refold_batch(db, config, batch))
            _commit(db)
        except SQLAlchemyError:
            db.rollback()
            raise

    catalog_services.invalidate_item(cache, kind=config.item_kind, name=snapshot["item_name"])
    logger.info("Ledger record deleted", extra={"ledger": config.key, "record_id": record_id, "batch": batch})
    return snapshot


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_ledger_record(db: Session, *, ledger: str, record_id: int):
    config = get_ledger(ledger)
    record = db.get(config.model, record_id)
    if record is None:
        raise RecordNotFound(config.key, record_id)
    return record


def list_ledger_records(
    db: Session,
    *,
    ledger: str,
    item_name: Optional[str] = None,
    item_code: Optional[str] = None,
    batch: Optional[str] = None,
    activity: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
):
    config = get_ledger(ledger)
    model = config.model
    query = db.query(model)
    if item_name:
        query = query.filter(func.lower(model.item_name) == item_name.strip().lower())
    if item_code:
        query = query.filter(model.item_code == item_code)
    if batch:
        query = query.filter(model.batch == batch)
    if activity:
        config.activity(activity)
        query = query.filter(model.activity == activity)
    return query.order_by(model.date.desc(), model.id.desc()).offset(skip).limit(limit).all()


def get_batch_stock(db: Session, *, ledger: str, batch: str) -> Decimal:
    return compute_running_stock(db, get_ledger(ledger), batch)


def get_available_batches(
    db: Session,
    *,
    ledger: str,
    item_name: str,
    activity: str,
    cache: Optional[ItemCache] = None,
) -> List[batch_resolver.BatchAvailability]:
    return batch_resolver.available_batches(
        db,
        ledger=ledger,
        item_name=item_name,
        activity=activity,
        cache=cache,
    )


def _batch_balances(db: Session, config: LedgerConfig) -> List[Tuple[str, str, str, str, Decimal]]:
    model = config.model
    rows = (
        db.query(
            model.item_code,
            func.max(model.item_name),
            func.max(model.unit),
            model.batch,
            func.coalesce(func.sum(signed_quantity_expr(config)), 0),
        )
        .group_by(model.item_code, model.batch)
        .all()
    )
    return [(code, name, unit, batch, to_decimal(total)) for code, name, unit, batch, total in rows]


def stock_summary(db: Session, *, ledger: str) -> List[schemas.StockSummaryRow]:
    """Per-item totals over batches that still hold stock."""
    config = get_ledger(ledger)
    try:
        balances = _batch_balances(db, config)
    except SQLAlchemyError:
        logger.warning("Stock summary query failed; returning empty summary", exc_info=True, extra={"ledger": ledger})
        return []

    totals: Dict[str, schemas.StockSummaryRow] = {}
    for code, name, unit, _batch, stock in balances:
        if stock <= ZERO:
            continue
        row = totals.get(code)
        if row is None:
            totals[code] = schemas.StockSummaryRow(
                item_code=code,
                item_name=name,
                unit=unit,
                total_stock=stock,
                batch_count=1,
            )
        else:
            row.total_stock += stock
            row.batch_count += 1
    return sorted(totals.values(), key=lambda row: row.item_name.lower())


def _stock_status(
    stock: Decimal,
    minimum: Optional[Decimal],
    maximum: Optional[Decimal],
) -> schemas.StockStatusEnum:
    if stock <= ZERO:
        return schemas.StockStatusEnum.OUT_OF_STOCK
    if minimum is not None and stock <= minimum:
        return schemas.StockStatusEnum.LOW_STOCK
    if maximum is not None and stock > maximum:
        return schemas.StockStatusEnum.OVERSTOCK
    return schemas.StockStatusEnum.NORMAL


def stock_valuation(db: Session, *, ledger: str) -> schemas.StockValuationRead:
    """
    Current stock per item valued at the catalog price, most valuable first.

    Every item with records in the ledger is listed, including those whose
    batches are all depleted. Status compares stock with the catalog's
    minimum and maximum levels.
    """
    config = get_ledger(ledger)
    catalog_model = catalog_models.MODEL_BY_KIND[config.item_kind]
    price_field = "unit_price" if config.item_kind == catalog_models.ItemKindEnum.MATERIAL else "price"
    try:
        balances = _batch_balances(db, config)
        codes = sorted({code for code, *_rest in balances})
        catalog = {}
        if codes:
            catalog = {
                item.code: item
                for item in db.query(catalog_model).filter(catalog_model.code.in_(codes)).all()
            }
    except SQLAlchemyError:
        logger.warning("Stock valuation query failed; returning empty valuation", exc_info=True, extra={"ledger": ledger})
        return schemas.StockValuationRead(ledger=config.key)

    stock_by_code: Dict[str, Decimal] = {}
    labels: Dict[str, Tuple[str, str]] = {}
    for code, name, unit, _batch, stock in balances:
        stock_by_code[code] = stock_by_code.get(code, ZERO) + max(ZERO, stock)
        labels.setdefault(code, (name, unit))

    rows: List[schemas.StockValuationRow] = []
    for code, stock in stock_by_code.items():
        name, unit = labels[code]
        item = catalog.get(code)
        unit_price = getattr(item, price_field, None) if item is not None else None
        minimum = getattr(item, "minimum_stock", None) if item is not None else None
        maximum = getattr(item, "maximum_stock", None) if item is not None else None
        value = (stock * to_decimal(unit_price)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
        rows.append(
            schemas.StockValuationRow(
                item_code=code,
                item_name=name,
                unit=unit,
                current_stock=stock,
                unit_price=unit_price,
                total_value=value,
                minimum_stock=minimum,
                maximum_stock=maximum,
                reorder_quantity=getattr(item, "reorder_quantity", None) if item is not None else None,
                status=_stock_status(stock, minimum, maximum),
            )
        )
    rows.sort(key=lambda row: (-row.total_value, row.item_name.lower()))

    return schemas.StockValuationRead(
        ledger=config.key,
        items=rows,
        total_valuation=sum((row.total_value for row in rows), ZERO),
        total_items=len(rows),
        low_stock_items=sum(1 for row in rows if row.status == schemas.StockStatusEnum.LOW_STOCK),
        out_of_stock_items=sum(1 for row in rows if row.status == schemas.StockStatusEnum.OUT_OF_STOCK),
    )


def expiring_batches(
    db: Session,
    *,
    ledger: str,
    days: int = 30,
    today: Optional[date] = None,
) -> List[schemas.ExpiringBatchRead]:
    """Batches with stock whose latest recorded expiry falls within ``days`` (already expired included)."""
    config = get_ledger(ledger)
    model = config.model
    today = today or _utcnow().date()
    horizon = today + timedelta(days=days)
    try:
        expiries = dict(
            db.query(model.batch, func.max(model.expiry_date))
            .filter(model.expiry_date.isnot(None))
            .group_by(model.batch)
            .all()
        )
        balances = _batch_balances(db, config)
    except SQLAlchemyError:
        logger.warning("Expiry alert query failed; returning no alerts", exc_info=True, extra={"ledger": ledger})
        return []

    alerts: List[schemas.ExpiringBatchRead] = []
    for code, name, _unit, batch, stock in balances:
        expiry = expiries.get(batch)
        if expiry is None or stock <= ZERO or expiry > horizon:
            continue
        alerts.append(
            schemas.ExpiringBatchRead(
                batch=batch,
                item_code=code,
                item_name=name,
                expiry_date=expiry,
                days_to_expiry=(expiry - today).days,
                stock=stock,
            )
        )
    alerts.sort(key=lambda alert: (alert.expiry_date, alert.batch))
    return alerts


def trace_batch(db: Session, *, batch: str) -> List[Tuple[str, object]]:
    """Every record carrying ``batch`` across all ledgers, oldest first."""
    entries: List[Tuple[str, object]] = []
    for key, config in LEDGERS.items():
        try:
            records = batch_records(db, config, batch)
        except SQLAlchemyError:
            logger.warning(
                "Batch trace query failed for ledger; skipping it",
                exc_info=True,
                extra={"ledger": key, "batch": batch},
            )
            continue
        entries.extend((key, record) for record in records)
    entries.sort(key=lambda entry: timeline_key(entry[1]))
    return entries
