from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from mfgerp.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class ItemStatusEnum(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class ItemKindEnum(str, enum.Enum):
    PRODUCT = "product"
    MATERIAL = "material"


class Product(Base):
    __tablename__ = "catalog_products"
    __table_args__ = (
        UniqueConstraint("code", name="uq_catalog_product_code"),
        Index("ix_catalog_products_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False, index=True)
    code = Column(String(32), nullable=False, index=True)
    unit = Column(String(16), nullable=False, default="PCS")
    pack_size = Column(Numeric(12, 3), nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    reorder_quantity = Column(Numeric(12, 3), nullable=True)
    minimum_stock = Column(Numeric(12, 3), nullable=True)
    maximum_stock = Column(Numeric(12, 3), nullable=True)
    status = Column(
        SAEnum(ItemStatusEnum, name="catalog_item_status_enum", native_enum=False),
        nullable=False,
        default=ItemStatusEnum.ACTIVE,
    )
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class Material(Base):
    __tablename__ = "catalog_materials"
    __table_args__ = (
        UniqueConstraint("code", name="uq_catalog_material_code"),
        Index("ix_catalog_materials_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False, index=True)
    code = Column(String(32), nullable=False, index=True)
    unit = Column(String(16), nullable=False, default="KG")
    pack_size = Column(Numeric(12, 3), nullable=True)
    unit_price = Column(Numeric(12, 2), nullable=True)
    reorder_quantity = Column(Numeric(12, 3), nullable=True)
    minimum_stock = Column(Numeric(12, 3), nullable=True)
    maximum_stock = Column(Numeric(12, 3), nullable=True)
    status = Column(
        SAEnum(ItemStatusEnum, name="catalog_item_status_enum", native_enum=False),
        nullable=False,
        default=ItemStatusEnum.ACTIVE,
    )
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


MODEL_BY_KIND = {
    ItemKindEnum.PRODUCT: Product,
    ItemKindEnum.MATERIAL: Material,
}
