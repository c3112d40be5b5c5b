"""
Selectable batches for an activity.

Availability of a batch for an activity is the upstream total for that batch
minus what the activity's own ledger has already drawn from it. Depleted and
over-drawn batches stay in the result so corrective entries can still target
them; the caller decides whether a request fits.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mfgerp.apps.catalog import services as catalog_services
from mfgerp.apps.catalog.cache import ItemCache

from .activities import LedgerConfig, get_ledger
from .stock import ZERO, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class BatchAvailability:
    batch: str
    available_quantity: Decimal
    expiry_date: Optional[date]
    source_activity: str
    is_available: bool
    upstream_quantity: Decimal
    consumed_quantity: Decimal
    unit: Optional[str]
    last_transaction_date: Optional[datetime]


def _expiry_by_batch(db: Session, source, item_code: str, batches: List[str]) -> Dict[str, date]:
    """Most recent expiry date recorded for each batch by the expiry-source activities."""
    if not batches:
        return {}
    model = get_ledger(source.expiry_source_ledger).model
    rows = (
        db.query(model.batch, model.expiry_date)
        .filter(
            model.item_code == item_code,
            model.batch.in_(batches),
            model.activity.in_(source.expiry_source_activities),
            model.expiry_date.isnot(None),
        )
        .order_by(model.date.desc(), model.id.desc())
        .all()
    )
    found: Dict[str, date] = {}
    for batch, expiry in rows:
        found.setdefault(batch, expiry)
    return found


def _consumed_by_batch(
    db: Session,
    config: LedgerConfig,
    source,
    item_code: str,
    batches: List[str],
    exclude_record_id: Optional[int],
) -> Dict[str, Decimal]:
    if not source.consumed_by or not batches:
        return {}
    model = config.model
    query = db.query(model.batch, func.coalesce(func.sum(model.quantity), 0)).filter(
        model.item_code == item_code,
        model.batch.in_(batches),
        model.activity.in_(source.consumed_by),
    )
    if exclude_record_id is not None:
        query = query.filter(model.id != exclude_record_id)
    return {batch: to_decimal(total) for batch, total in query.group_by(model.batch).all()}


def resolve_available_batches(
    db: Session,
    *,
    config: LedgerConfig,
    activity: str,
    item_code: str,
    exclude_record_id: Optional[int] = None,
) -> List[BatchAvailability]:
    """
    Candidate batches for ``activity`` on ``item_code``, newest first.

    Query errors propagate. ``exclude_record_id`` leaves one of this ledger's
    records out of the consumed total, so an edited record does not count
    against itself.
    """
    spec = config.activity(activity)
    source = spec.upstream
    if source is None:
        return []

    upstream_model = get_ledger(source.ledger).model
    rows = (
        db.query(upstream_model)
        .filter(
            upstream_model.item_code == item_code,
            upstream_model.activity.in_(source.activities),
        )
        .order_by(upstream_model.date.desc(), upstream_model.id.desc())
        .all()
    )
    if not rows:
        return []

    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    first_seen: Dict[str, object] = {}
    own_expiry: Dict[str, date] = {}
    for row in rows:
        totals[row.batch] += to_decimal(row.quantity)
        # Rows arrive newest first, so the first one seen is the latest.
        first_seen.setdefault(row.batch, row)
        if row.expiry_date is not None:
            own_expiry.setdefault(row.batch, row.expiry_date)

    batches = list(first_seen.keys())
    consumed = _consumed_by_batch(db, config, source, item_code, batches, exclude_record_id)
    sourced_expiry = _expiry_by_batch(db, source, item_code, batches)

    results: List[BatchAvailability] = []
    for batch in batches:
        latest = first_seen[batch]
        upstream_quantity = totals[batch]
        consumed_quantity = consumed.get(batch, ZERO)
        available = upstream_quantity - consumed_quantity
        results.append(
            BatchAvailability(
                batch=batch,
                available_quantity=available,
                expiry_date=sourced_expiry.get(batch) or own_expiry.get(batch),
                source_activity=latest.activity,
                is_available=available > ZERO,
                upstream_quantity=upstream_quantity,
                consumed_quantity=consumed_quantity,
                unit=latest.unit,
                last_transaction_date=latest.date,
            )
        )
    return results


def available_batches(
    db: Session,
    *,
    ledger: str,
    item_name: str,
    activity: str,
    cache: Optional[ItemCache] = None,
) -> List[BatchAvailability]:
    """
    Read-side variant of ``resolve_available_batches`` keyed by item name.

    Unknown ledgers and activities still raise; an unresolvable item yields an
    empty list, and query failures are logged and yield an empty list.
    """
    config = get_ledger(ledger)
    config.activity(activity)
    try:
        item = catalog_services.resolve_item(db, kind=config.item_kind, name=item_name, cache=cache)
        if item is None:
            return []
        return resolve_available_batches(db, config=config, activity=activity, item_code=item.code)
    except SQLAlchemyError:
        logger.warning(
            "Available batch lookup failed; returning no batches",
            exc_info=True,
            extra={"ledger": ledger, "activity": activity, "item_name": item_name},
        )
        return []
