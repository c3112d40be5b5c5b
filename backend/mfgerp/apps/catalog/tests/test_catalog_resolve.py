from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import event

from mfgerp.apps.catalog import models, schemas, services
from mfgerp.apps.catalog.cache import ItemCache


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def select_counter(engine):
    statements = []

    def _count(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", _count)
    try:
        yield statements
    finally:
        event.remove(engine, "before_cursor_execute", _count)


def _create_product(db, name="Sweet Bread", code="SB1", status=models.ItemStatusEnum.ACTIVE):
    return services.create_product(
        db,
        payload=schemas.ProductCreate(name=name, code=code, unit="PCS", price=Decimal("25.00"), status=status),
    )


def test_resolve_is_case_insensitive_and_trims(db_session):
    _create_product(db_session)

    info = services.resolve_item(db_session, kind=models.ItemKindEnum.PRODUCT, name="  sweet BREAD ")

    assert info is not None
    assert info.code == "SB1"
    assert info.unit == "PCS"
    assert info.name == "Sweet Bread"


def test_inactive_items_do_not_resolve(db_session):
    _create_product(db_session, status=models.ItemStatusEnum.INACTIVE)

    assert services.resolve_item(db_session, kind="product", name="Sweet Bread") is None


def test_kinds_are_resolved_separately(db_session):
    services.create_material(db_session, payload=schemas.MaterialCreate(name="Flour", code="FL1"))

    assert services.resolve_item(db_session, kind="product", name="Flour") is None
    material = services.resolve_item(db_session, kind="material", name="flour")
    assert material.code == "FL1"
    assert material.unit == "KG"


def test_second_resolution_within_ttl_skips_the_catalog(db_session, select_counter):
    _create_product(db_session)
    cache = ItemCache(ttl_seconds=300)

    first = services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache)
    queries_after_first = len(select_counter)
    second = services.resolve_item(db_session, kind="product", name="sweet bread", cache=cache)

    assert len(select_counter) == queries_after_first
    assert (second.code, second.unit) == (first.code, first.unit)


def test_cached_entry_survives_catalog_change_until_ttl(db_session):
    product = _create_product(db_session)
    clock = _FakeClock()
    cache = ItemCache(ttl_seconds=300, clock=clock)
    services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache)

    product.status = models.ItemStatusEnum.INACTIVE
    db_session.commit()

    clock.now = 299
    assert services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache) is not None

    clock.now = 301
    assert services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache) is None


def test_misses_are_not_cached(db_session):
    cache = ItemCache()

    assert services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache) is None
    _create_product(db_session)

    assert services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache) is not None


def test_invalidate_item_drops_cached_entry(db_session):
    _create_product(db_session)
    cache = ItemCache()
    services.resolve_item(db_session, kind="product", name="Sweet Bread", cache=cache)
    assert len(cache) == 1

    services.invalidate_item(cache, kind="product", name="SWEET bread")

    assert len(cache) == 0


def test_duplicate_code_is_rejected(db_session):
    _create_product(db_session)

    with pytest.raises(services.DuplicateItemCode):
        _create_product(db_session, name="Other Bread")


def test_list_items_filters_inactive(db_session):
    _create_product(db_session)
    _create_product(db_session, name="Old Bread", code="OB1", status=models.ItemStatusEnum.INACTIVE)

    active = services.list_items(db_session, kind="product")
    everything = services.list_items(db_session, kind="product", active_only=False)

    assert [item.code for item in active] == ["SB1"]
    assert sorted(item.code for item in everything) == ["OB1", "SB1"]
