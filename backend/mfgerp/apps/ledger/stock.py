"""
Per-batch stock arithmetic.

``compute_running_stock`` is the aggregate view used by read endpoints and
fails open. ``fold`` and ``replay_timeline`` walk records in chronological
order; the lifecycle services use them to materialize ``stock_after`` and to
reject writes that would drive any point of a batch timeline below zero.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .activities import LedgerConfig

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def signed_quantity(config: LedgerConfig, activity: str, quantity) -> Decimal:
    qty = to_decimal(quantity)
    if activity in config.increasing:
        return qty
    if activity in config.decreasing:
        return -qty
    # Rows carrying an activity no longer in the table do not move stock.
    return ZERO


def timeline_key(record) -> Tuple[datetime, float]:
    """Chronological position; records not yet flushed sort after their date peers."""
    record_id = getattr(record, "id", None)
    return (record.date, float("inf") if record_id is None else record_id)


def signed_quantity_expr(config: LedgerConfig):
    model = config.model
    return case(
        (model.activity.in_(sorted(config.increasing)), model.quantity),
        (model.activity.in_(sorted(config.decreasing)), -model.quantity),
        else_=0,
    )


def compute_running_stock(db: Session, config: LedgerConfig, batch: str) -> Decimal:
    """
    Sum of increasing minus decreasing quantities for ``batch``, clamped at 0.

    Returns 0 when the query fails; callers on the write path use
    ``replay_timeline`` against loaded records instead.
    """
    if not batch:
        return ZERO
    model = config.model
    signed = signed_quantity_expr(config)
    try:
        total = db.query(func.coalesce(func.sum(signed), 0)).filter(model.batch == batch).scalar()
    except SQLAlchemyError:
        logger.warning(
            "Batch stock query failed; reporting zero",
            exc_info=True,
            extra={"ledger": config.key, "batch": batch},
        )
        return ZERO
    return max(ZERO, to_decimal(total))


def batch_records(
    db: Session,
    config: LedgerConfig,
    batch: str,
    *,
    exclude_id: Optional[int] = None,
) -> List:
    model = config.model
    query = db.query(model).filter(model.batch == batch)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return query.order_by(model.date.asc(), model.id.asc()).all()


def fold(config: LedgerConfig, records: Iterable, start=ZERO) -> List[Decimal]:
    """Running balance after each record, clamped at zero per step."""
    running = to_decimal(start)
    balances: List[Decimal] = []
    for record in records:
        running = max(ZERO, running + signed_quantity(config, record.activity, record.quantity))
        balances.append(running)
    return balances


def replay_timeline(config: LedgerConfig, records: Sequence) -> List[Decimal]:
    """Running balance after each record without clamping."""
    running = ZERO
    balances: List[Decimal] = []
    for record in records:
        running = running + signed_quantity(config, record.activity, record.quantity)
        balances.append(running)
    return balances


def first_negative(config: LedgerConfig, records: Sequence) -> Optional[Tuple[int, Decimal]]:
    """
    Index of the first record whose balance goes negative, with the balance
    available just before it. ``None`` when the whole timeline holds.
    """
    previous = ZERO
    for index, balance in enumerate(replay_timeline(config, records)):
        if balance < ZERO:
            return index, previous
        previous = balance
    return None
