from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from mfgerp.apps.catalog import models as catalog_models
from mfgerp.apps.catalog import schemas as catalog_schemas
from mfgerp.apps.catalog import services as catalog_services
from mfgerp.apps.catalog.cache import ItemCache
from mfgerp.apps.ledger import errors, schemas, services
from mfgerp.apps.ledger.locks import BatchLockRegistry
from mfgerp.apps.ledger.services import LedgerPolicy

MATERIALS = "material_receive_issue"
PRODUCTION = "production_movement"
STRICT = LedgerPolicy(skip_check_when_depleted=True, strict_cascade=True)


def _material(db, name="Flour X", code="X1", unit="KG", status=catalog_models.ItemStatusEnum.ACTIVE):
    return catalog_services.create_material(
        db,
        payload=catalog_schemas.MaterialCreate(name=name, code=code, unit=unit, status=status),
    )


def _product(db, name="Bun", code="P1"):
    return catalog_services.create_product(
        db,
        payload=catalog_schemas.ProductCreate(name=name, code=code, unit="PCS"),
    )


def _create(db, ledger=MATERIALS, policy=STRICT, cache=None, **fields):
    fields.setdefault("item_name", "Flour X")
    fields.setdefault("document_number", "GRN-1")
    return services.create_ledger_record(
        db,
        ledger=ledger,
        payload=schemas.LedgerRecordCreate(**fields),
        cache=cache,
        policy=policy,
        locks=BatchLockRegistry(),
    )


def _receive(db, quantity, day, batch=None, expiry=date(2025, 1, 1), **fields):
    return _create(
        db,
        activity="Receive",
        quantity=Decimal(quantity),
        date=day,
        batch=batch,
        expiry_date=expiry,
        **fields,
    )


def _issue(db, quantity, day, batch, **fields):
    return _create(db, activity="Issue", quantity=Decimal(quantity), date=day, batch=batch, **fields)


def _update(db, record_id, ledger=MATERIALS, policy=STRICT, **fields):
    return services.update_ledger_record(
        db,
        ledger=ledger,
        record_id=record_id,
        payload=schemas.LedgerRecordUpdate(**fields),
        policy=policy,
        locks=BatchLockRegistry(),
    )


def _delete(db, record_id, ledger=MATERIALS, policy=STRICT):
    return services.delete_ledger_record(
        db,
        ledger=ledger,
        record_id=record_id,
        policy=policy,
        locks=BatchLockRegistry(),
    )


def _stock_after(db, record):
    db.refresh(record)
    return record.stock_after


def test_receive_issue_edit_delete_walkthrough(db_session):
    _material(db_session)

    receive = _receive(db_session, 100, datetime(2024, 1, 1))
    assert receive.batch == "X1-010124"
    assert receive.stock_after == Decimal("100")
    assert receive.item_code == "X1"
    assert receive.unit == "KG"

    issue = _issue(db_session, 30, datetime(2024, 1, 5), "X1-010124")
    assert issue.stock_after == Decimal("70")

    with pytest.raises(errors.InsufficientStock) as excinfo:
        _issue(db_session, 80, datetime(2024, 1, 6), "X1-010124")
    assert excinfo.value.available == Decimal("70")
    assert excinfo.value.requested == Decimal("80")

    _update(db_session, receive.id, quantity=Decimal("50"))
    assert _stock_after(db_session, receive) == Decimal("50")
    assert _stock_after(db_session, issue) == Decimal("20")

    removed = _delete(db_session, issue.id)
    assert removed["id"] == issue.id
    assert _stock_after(db_session, receive) == Decimal("50")
    assert services.get_batch_stock(db_session, ledger=MATERIALS, batch="X1-010124") == Decimal("50")


def test_deleting_issue_without_edit_restores_full_receive(db_session):
    _material(db_session)
    receive = _receive(db_session, 100, datetime(2024, 1, 1))
    issue = _issue(db_session, 30, datetime(2024, 1, 5), receive.batch)

    _delete(db_session, issue.id)

    assert _stock_after(db_session, receive) == Decimal("100")


def test_backdated_receive_recomputes_later_records(db_session):
    _material(db_session)
    receive = _receive(db_session, 100, datetime(2024, 1, 10))
    issue = _issue(db_session, 40, datetime(2024, 1, 12), receive.batch)

    early = _receive(db_session, 20, datetime(2024, 1, 5), batch=receive.batch)

    assert early.stock_after == Decimal("20")
    assert _stock_after(db_session, receive) == Decimal("120")
    assert _stock_after(db_session, issue) == Decimal("80")


def test_backdated_issue_cannot_strand_a_later_issue(db_session):
    _material(db_session)
    receive = _receive(db_session, 100, datetime(2024, 1, 10))
    later = _issue(db_session, 90, datetime(2024, 1, 12), receive.batch)

    with pytest.raises(errors.InsufficientStock) as excinfo:
        _issue(db_session, 20, datetime(2024, 1, 11), receive.batch)

    assert excinfo.value.available == Decimal("80")
    assert excinfo.value.requested == Decimal("90")
    assert _stock_after(db_session, later) == Decimal("10")


def test_same_day_records_keep_entry_order(db_session):
    _material(db_session)
    day = datetime(2024, 2, 1, 8, 0)
    receive = _receive(db_session, 10, day)
    issue = _issue(db_session, 10, day, receive.batch)

    assert issue.stock_after == Decimal("0")
    with pytest.raises(errors.InsufficientStock):
        _issue(db_session, 1, day, receive.batch)


def test_update_never_changes_item_code_or_unit(db_session):
    _material(db_session)
    receive = _receive(db_session, 10, datetime(2024, 1, 1))

    updated = services.update_ledger_record(
        db_session,
        ledger=MATERIALS,
        record_id=receive.id,
        payload=schemas.LedgerRecordUpdate.model_validate(
            {"note": "recounted", "item_code": "HIJACK", "unit": "LB", "item_name": "Renamed Flour"}
        ),
        policy=STRICT,
    )

    assert updated.item_code == "X1"
    assert updated.unit == "KG"
    assert updated.item_name == "Renamed Flour"
    assert updated.note == "recounted"


def test_update_cannot_shrink_receive_below_issued(db_session):
    _material(db_session)
    receive = _receive(db_session, 100, datetime(2024, 1, 1))
    _issue(db_session, 60, datetime(2024, 1, 2), receive.batch)

    with pytest.raises(errors.InsufficientStock):
        _update(db_session, receive.id, quantity=Decimal("50"))

    assert _stock_after(db_session, receive) == Decimal("100")


def test_moving_record_to_another_batch_refolds_both(db_session):
    _material(db_session)
    first = _receive(db_session, 100, datetime(2024, 1, 1))
    second = _receive(db_session, 40, datetime(2024, 1, 2))
    issue = _issue(db_session, 30, datetime(2024, 1, 3), first.batch)

    _update(db_session, issue.id, batch=second.batch)

    assert services.get_batch_stock(db_session, ledger=MATERIALS, batch=first.batch) == Decimal("100")
    assert services.get_batch_stock(db_session, ledger=MATERIALS, batch=second.batch) == Decimal("10")
    assert _stock_after(db_session, issue) == Decimal("10")


def test_deleting_receive_that_later_issues_depend_on_is_refused(db_session):
    _material(db_session)
    receive = _receive(db_session, 50, datetime(2024, 1, 1))
    _issue(db_session, 20, datetime(2024, 1, 2), receive.batch)

    with pytest.raises(errors.InsufficientStock):
        _delete(db_session, receive.id)

    assert services.get_batch_stock(db_session, ledger=MATERIALS, batch=receive.batch) == Decimal("30")


def test_expiry_rules(db_session):
    _material(db_session)

    with pytest.raises(errors.ExpiryDateRequired):
        _receive(db_session, 10, datetime(2024, 1, 1), expiry=None)

    with pytest.raises(errors.ExpiryBeforeTransactionDate):
        _receive(db_session, 10, datetime(2024, 1, 10), expiry=date(2024, 1, 9))

    same_day = _receive(db_session, 10, datetime(2024, 1, 10), expiry=date(2024, 1, 10))
    assert same_day.expiry_date == date(2024, 1, 10)


def test_common_field_validation(db_session):
    _material(db_session)

    with pytest.raises(errors.FutureTransactionDate):
        _receive(db_session, 10, datetime.utcnow() + timedelta(days=2))

    with pytest.raises(errors.DocumentNumberRequired):
        _receive(db_session, 10, datetime(2024, 1, 1), document_number="  ")

    with pytest.raises(errors.UnknownActivity):
        _create(db_session, activity="Teleport", quantity=Decimal("1"), date=datetime(2024, 1, 1), batch="X1-1")

    with pytest.raises(errors.UnknownLedger):
        _create(db_session, ledger="petty_cash", activity="Receive", quantity=Decimal("1"))

    with pytest.raises(errors.ReferencedItemNotFound):
        _receive(db_session, 10, datetime(2024, 1, 1), item_name="Sugar")

    with pytest.raises(errors.BatchRequired):
        _issue(db_session, 1, datetime(2024, 1, 1), None)


def test_inactive_item_is_not_accepted(db_session):
    _material(db_session, status=catalog_models.ItemStatusEnum.INACTIVE)

    with pytest.raises(errors.ReferencedItemNotFound):
        _receive(db_session, 10, datetime(2024, 1, 1))


def test_note_is_truncated(db_session):
    _material(db_session)

    record = _receive(db_session, 10, datetime(2024, 1, 1), note="n" * 150)

    assert record.note == "n" * 100


def test_supplied_batch_on_auto_activity_is_kept(db_session):
    _material(db_session)

    record = _receive(db_session, 10, datetime(2024, 1, 1), batch="X1-LEGACY-7")

    assert record.batch == "X1-LEGACY-7"


@pytest.mark.parametrize("batch", ["Y1-001", "X1-", "X1", "x1-001"])
def test_manual_batch_format_is_enforced(db_session, batch):
    _product(db_session, name="Flour X", code="X1")

    with pytest.raises(errors.InvalidBatchFormat):
        _create(
            db_session,
            ledger=PRODUCTION,
            activity="Waste",
            quantity=Decimal("1"),
            date=datetime(2024, 1, 1),
            batch=batch,
        )


def test_manual_batch_is_required(db_session):
    _product(db_session, name="Flour X", code="X1")

    with pytest.raises(errors.BatchRequired):
        _create(db_session, ledger=PRODUCTION, activity="Waste", quantity=Decimal("1"), date=datetime(2024, 1, 1))


def test_ledger_write_invalidates_cached_item(db_session):
    _material(db_session)
    cache = ItemCache()
    _receive(db_session, 10, datetime(2024, 1, 1), cache=cache)

    assert len(cache) == 0


def test_cascade_failure_rolls_back_when_strict(db_session, monkeypatch):
    _material(db_session)
    receive = _receive(db_session, 100, datetime(2024, 1, 10))

    def _boom(*_args, **_kwargs):
        raise OperationalError("UPDATE material_receive_issue", {}, Exception("lost connection"))

    monkeypatch.setattr(services, "_cascade_forward", _boom)

    with pytest.raises(OperationalError):
        _issue(db_session, 10, datetime(2024, 1, 12), receive.batch)

    assert len(services.list_ledger_records(db_session, ledger=MATERIALS)) == 1


def test_cascade_failure_is_logged_when_not_strict(db_session, monkeypatch, caplog):
    _material(db_session)
    receive = _receive(db_session, 100, datetime(2024, 1, 10))

    def _boom(*_args, **_kwargs):
        raise OperationalError("UPDATE material_receive_issue", {}, Exception("lost connection"))

    monkeypatch.setattr(services, "_cascade_forward", _boom)
    lenient = LedgerPolicy(skip_check_when_depleted=True, strict_cascade=False)

    with caplog.at_level(logging.ERROR, logger="mfgerp.apps.ledger.services"):
        issue = _issue(db_session, 10, datetime(2024, 1, 12), receive.batch, policy=lenient)

    assert issue.id is not None
    assert issue.stock_after == Decimal("90")
    assert any("Stock recalculation failed" in rec.getMessage() for rec in caplog.records)


def test_record_not_found(db_session):
    with pytest.raises(errors.RecordNotFound):
        _update(db_session, 999, quantity=Decimal("1"))

    with pytest.raises(errors.RecordNotFound):
        _delete(db_session, 999)


def test_policy_from_env(monkeypatch):
    monkeypatch.setenv("LEDGER_SKIP_CHECK_WHEN_DEPLETED", "false")
    monkeypatch.delenv("LEDGER_STRICT_CASCADE", raising=False)

    policy = LedgerPolicy.from_env()

    assert policy.skip_check_when_depleted is False
    assert policy.strict_cascade is True


@pytest.mark.parametrize("quantity", ["0.0004", "1.0004"])
def test_quantity_finer_than_stored_scale_is_rejected(quantity):
    with pytest.raises(ValidationError):
        schemas.LedgerRecordCreate(
            activity="Receive",
            item_name="Flour X",
            quantity=Decimal(quantity),
            document_number="GRN-1",
        )
    with pytest.raises(ValidationError):
        schemas.LedgerRecordUpdate(quantity=Decimal(quantity))


def test_price_finer_than_stored_scale_is_rejected():
    with pytest.raises(ValidationError):
        schemas.LedgerRecordCreate(
            activity="Sales",
            item_name="Bun",
            quantity=Decimal("1"),
            price=Decimal("2.5005"),
            document_number="INV-1",
        )


def test_three_decimal_quantities_balance_exactly(db_session):
    _material(db_session)

    receive = _receive(db_session, "1.001", datetime(2024, 1, 1))
    issue = _issue(db_session, "1.001", datetime(2024, 1, 2), receive.batch)

    db_session.refresh(receive)
    assert receive.quantity == Decimal("1.001")
    assert _stock_after(db_session, issue) == Decimal("0")
    assert services.get_batch_stock(db_session, ledger=MATERIALS, batch=receive.batch) == Decimal("0")


def _bulk(db, payloads, ledger=MATERIALS, policy=STRICT):
    return services.create_ledger_records(
        db,
        ledger=ledger,
        payloads=[schemas.LedgerRecordCreate(**fields) for fields in payloads],
        policy=policy,
        locks=BatchLockRegistry(),
    )


def _line(activity, quantity, day, **fields):
    fields.setdefault("item_name", "Flour X")
    fields.setdefault("document_number", "DOC-1")
    return dict(activity=activity, quantity=Decimal(quantity), date=day, **fields)


def test_bulk_create_applies_records_in_order(db_session):
    _material(db_session)

    records = _bulk(
        db_session,
        [
            _line("Receive", 100, datetime(2024, 1, 1), expiry_date=date(2025, 1, 1)),
            _line("Issue", 30, datetime(2024, 1, 2), batch="X1-010124"),
            _line("Issue", 70, datetime(2024, 1, 3), batch="X1-010124"),
        ],
    )

    assert [record.stock_after for record in records] == [Decimal("100"), Decimal("70"), Decimal("0")]
    assert all(record.id is not None for record in records)


def test_bulk_create_reports_every_invalid_record_and_saves_none(db_session):
    _material(db_session)

    with pytest.raises(errors.BulkRecordsRejected) as excinfo:
        _bulk(
            db_session,
            [
                _line("Receive", 100, datetime(2024, 1, 1), expiry_date=date(2025, 1, 1)),
                _line("Receive", 5, datetime(2024, 1, 1), item_name="Sugar", expiry_date=date(2025, 1, 1)),
                _line("Issue", 5, datetime(2024, 1, 2), batch="X1-010124", document_number="  "),
            ],
        )

    detail = excinfo.value.to_detail()
    assert detail["code"] == "bulk_records_rejected"
    assert [(entry["index"], entry["code"]) for entry in detail["errors"]] == [
        (1, "referenced_item_not_found"),
        (2, "document_number_required"),
    ]
    assert excinfo.value.status_code == 400
    assert services.list_ledger_records(db_session, ledger=MATERIALS) == []


def test_bulk_create_rolls_back_earlier_records_on_stock_failure(db_session):
    _material(db_session)

    with pytest.raises(errors.BulkRecordsRejected) as excinfo:
        _bulk(
            db_session,
            [
                _line("Receive", 10, datetime(2024, 1, 1), expiry_date=date(2025, 1, 1)),
                _line("Issue", 11, datetime(2024, 1, 2), batch="X1-010124"),
            ],
        )

    assert excinfo.value.failures[0]["index"] == 1
    assert excinfo.value.failures[0]["code"] == "insufficient_stock"
    assert excinfo.value.status_code == 409
    assert services.list_ledger_records(db_session, ledger=MATERIALS) == []
