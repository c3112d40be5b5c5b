from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from mfgerp.database import get_read_db, get_write_db

from . import models, schemas, services

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _item_cache(request: Request):
    return getattr(request.app.state, "item_cache", None)


@router.post(
    "/products",
    response_model=schemas.ProductRead,
    status_code=status.HTTP_201_CREATED,
)
def create_product(
    payload: schemas.ProductCreate,
    request: Request,
    db: Session = Depends(get_write_db),
):
    try:
        return services.create_product(db, payload=payload, cache=_item_cache(request))
    except services.DuplicateItemCode as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/products", response_model=List[schemas.ProductRead])
def list_products(
    active_only: bool = Query(True),
    db: Session = Depends(get_read_db),
):
    return services.list_items(db, kind=models.ItemKindEnum.PRODUCT, active_only=active_only)


@router.post(
    "/materials",
    response_model=schemas.MaterialRead,
    status_code=status.HTTP_201_CREATED,
)
def create_material(
    payload: schemas.MaterialCreate,
    request: Request,
    db: Session = Depends(get_write_db),
):
    try:
        return services.create_material(db, payload=payload, cache=_item_cache(request))
    except services.DuplicateItemCode as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/materials", response_model=List[schemas.MaterialRead])
def list_materials(
    active_only: bool = Query(True),
    db: Session = Depends(get_read_db),
):
    return services.list_items(db, kind=models.ItemKindEnum.MATERIAL, active_only=active_only)


@router.get("/resolve", response_model=schemas.ItemInfoRead)
def resolve_item(
    request: Request,
    kind: models.ItemKindEnum = Query(...),
    name: str = Query(..., min_length=1),
    db: Session = Depends(get_read_db),
):
    info = services.resolve_item(db, kind=kind, name=name, cache=_item_cache(request))
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active {kind.value} named {name!r}.",
        )
    return schemas.ItemInfoRead(
        kind=info.kind,
        name=info.name,
        code=info.code,
        unit=info.unit,
        status=info.status,
    )
