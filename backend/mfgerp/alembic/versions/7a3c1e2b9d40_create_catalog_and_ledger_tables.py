"""Create catalog and batch ledger tables.

Revision ID: 7a3c1e2b9d40
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "7a3c1e2b9d40"
down_revision = None
branch_labels = None
depends_on = None

LEDGER_TABLES = (
    "material_receive_issue",
    "material_consumption",
    "production_movement",
    "product_receive_issue",
    "daily_sales",
)

ITEM_STATUS = sa.Enum("ACTIVE", "INACTIVE", name="catalog_item_status_enum", native_enum=False)


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return bool(insp.has_table(table_name))


def _index_exists(table_name: str, index_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    if not insp.has_table(table_name):
        return False
    idxs = insp.get_indexes(table_name)
    return any(i.get("name") == index_name for i in idxs)


def _create_index_if_missing(index_name: str, table_name: str, columns, unique: bool = False) -> None:
    if not _index_exists(table_name, index_name):
        op.create_index(index_name, table_name, columns, unique=unique)


def _ledger_columns(with_price: bool):
    columns = [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("activity", sa.String(length=64), nullable=False),
        sa.Column("item_name", sa.String(length=128), nullable=False),
        sa.Column("item_code", sa.String(length=32), nullable=False),
        sa.Column("batch", sa.String(length=64), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 3), nullable=False),
        sa.Column("stock_after", sa.Numeric(18, 3), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("note", sa.String(length=100), nullable=True),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]
    if with_price:
        columns.append(sa.Column("price", sa.Numeric(18, 3), nullable=True))
        columns.append(sa.Column("total_amount", sa.Numeric(18, 3), nullable=True))
    return columns


def upgrade() -> None:
    if not _table_exists("catalog_products"):
        op.create_table(
            "catalog_products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("unit", sa.String(length=16), nullable=False),
            sa.Column("pack_size", sa.Numeric(12, 3), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=True),
            sa.Column("reorder_quantity", sa.Numeric(12, 3), nullable=True),
            sa.Column("minimum_stock", sa.Numeric(12, 3), nullable=True),
            sa.Column("maximum_stock", sa.Numeric(12, 3), nullable=True),
            sa.Column("status", ITEM_STATUS, nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("code", name="uq_catalog_product_code"),
        )
    _create_index_if_missing("ix_catalog_products_id", "catalog_products", ["id"])
    _create_index_if_missing("ix_catalog_products_name", "catalog_products", ["name"])
    _create_index_if_missing("ix_catalog_products_code", "catalog_products", ["code"])
    _create_index_if_missing("ix_catalog_products_status", "catalog_products", ["status"])

    if not _table_exists("catalog_materials"):
        op.create_table(
            "catalog_materials",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("unit", sa.String(length=16), nullable=False),
            sa.Column("pack_size", sa.Numeric(12, 3), nullable=True),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("reorder_quantity", sa.Numeric(12, 3), nullable=True),
            sa.Column("minimum_stock", sa.Numeric(12, 3), nullable=True),
            sa.Column("maximum_stock", sa.Numeric(12, 3), nullable=True),
            sa.Column("status", ITEM_STATUS, nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("code", name="uq_catalog_material_code"),
        )
    _create_index_if_missing("ix_catalog_materials_id", "catalog_materials", ["id"])
    _create_index_if_missing("ix_catalog_materials_name", "catalog_materials", ["name"])
    _create_index_if_missing("ix_catalog_materials_code", "catalog_materials", ["code"])
    _create_index_if_missing("ix_catalog_materials_status", "catalog_materials", ["status"])

    for table in LEDGER_TABLES:
        if not _table_exists(table):
            op.create_table(table, *_ledger_columns(with_price=table == "daily_sales"))
        for column in ("id", "date", "activity", "item_code", "batch", "expiry_date", "document_number"):
            _create_index_if_missing(f"ix_{table}_{column}", table, [column])
        _create_index_if_missing(f"ix_{table}_batch_date", table, ["batch", "date", "id"])
        _create_index_if_missing(f"ix_{table}_item_activity", table, ["item_code", "activity"])


def downgrade() -> None:
    # Guarded drops (safe if partially applied)
    for table in reversed(LEDGER_TABLES):
        if _table_exists(table):
            op.drop_table(table)

    for table in ("catalog_materials", "catalog_products"):
        if _table_exists(table):
            op.drop_table(table)
