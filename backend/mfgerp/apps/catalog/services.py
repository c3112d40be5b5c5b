from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .cache import ItemCache

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = float(os.getenv("CATALOG_CACHE_TTL_SECONDS", "300"))
CACHE_SWEEP_SECONDS = float(os.getenv("CATALOG_CACHE_SWEEP_SECONDS", "60"))


class DuplicateItemCode(Exception):
    """Raised when a catalog code is already taken for the item kind."""


@dataclass(frozen=True)
class ItemInfo:
    kind: models.ItemKindEnum
    name: str
    code: str
    unit: str
    status: models.ItemStatusEnum


def build_item_cache() -> ItemCache:
    return ItemCache(ttl_seconds=CACHE_TTL_SECONDS, sweep_interval_seconds=CACHE_SWEEP_SECONDS)


def _normalise_name(name: str) -> str:
    return (name or "").strip().lower()


def cache_key(kind: Union[models.ItemKindEnum, str], name: str) -> str:
    return f"{models.ItemKindEnum(kind).value}:{_normalise_name(name)}"


def resolve_item(
    db: Session,
    *,
    kind: Union[models.ItemKindEnum, str],
    name: str,
    cache: Optional[ItemCache] = None,
) -> Optional[ItemInfo]:
    """
    Case-insensitive exact match of ``name`` against active catalog entries.

    Hits are cached for the cache TTL; misses are not cached so that a newly
    activated item becomes visible immediately.
    """
    kind = models.ItemKindEnum(kind)
    normalised = _normalise_name(name)
    if not normalised:
        return None

    key = cache_key(kind, normalised)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return cached

    model = models.MODEL_BY_KIND[kind]
    row = (
        db.query(model)
        .filter(
            func.lower(model.name) == normalised,
            model.status == models.ItemStatusEnum.ACTIVE,
        )
        .order_by(model.id.asc())
        .first()
    )
    if row is None:
        return None

    info = ItemInfo(kind=kind, name=row.name, code=row.code, unit=row.unit, status=row.status)
    if cache is not None:
        cache.set(key, info)
    return info


def invalidate_item(cache: Optional[ItemCache], *, kind: Union[models.ItemKindEnum, str], name: str) -> None:
    if cache is None:
        return
    cache.delete(cache_key(kind, name))


def _create_item(db: Session, model, payload, *, cache: Optional[ItemCache]):
    item = model(**payload.model_dump())
    db.add(item)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateItemCode(f"Code {payload.code!r} is already in use.") from exc
    db.refresh(item)
    kind = models.ItemKindEnum.PRODUCT if model is models.Product else models.ItemKindEnum.MATERIAL
    invalidate_item(cache, kind=kind, name=item.name)
    logger.info("Catalog item created", extra={"kind": kind.value, "code": item.code})
    return item


def create_product(
    db: Session,
    *,
    payload: schemas.ProductCreate,
    cache: Optional[ItemCache] = None,
) -> models.Product:
    return _create_item(db, models.Product, payload, cache=cache)


def create_material(
    db: Session,
    *,
    payload: schemas.MaterialCreate,
    cache: Optional[ItemCache] = None,
) -> models.Material:
    return _create_item(db, models.Material, payload, cache=cache)


def list_items(
    db: Session,
    *,
    kind: Union[models.ItemKindEnum, str],
    active_only: bool = True,
) -> List[Union[models.Product, models.Material]]:
    model = models.MODEL_BY_KIND[models.ItemKindEnum(kind)]
    query = db.query(model)
    if active_only:
        query = query.filter(model.status == models.ItemStatusEnum.ACTIVE)
    return query.order_by(model.name.asc()).all()
