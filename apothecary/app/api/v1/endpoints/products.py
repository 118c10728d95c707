from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, get_request_context, require_admin, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.schemas.catalog import ProductRead
from apothecary.app.schemas.stock_movement import StockMovementRead
from apothecary.services import catalog, inventory

router = APIRouter(prefix="/products")


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    generic_name: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    reorder_level: int = Field(default=0, ge=0)
    unit_price: float = Field(default=0, ge=0)
    # stock d'ouverture : inscrit au journal, jamais écrit directement
    stock_quantity: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    sku: str | None = Field(default=None, min_length=1, max_length=64)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    generic_name: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    reorder_level: int | None = Field(default=None, ge=0)
    unit_price: float | None = Field(default=None, ge=0)


class StockAdjust(BaseModel):
    adjustment: int
    reason: str | None = Field(default=None, max_length=255)


@router.get("", response_model=list[ProductRead])
def list_products(
    low_stock: bool = False,
    _: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return catalog.list_products(db, low_stock_only=low_stock)


@router.get("/{product_id}", response_model=ProductRead)
def get_product(product_id: int, _: RequestContext = Depends(get_request_context), db: Session = Depends(get_db)):
    return catalog.get_product(db, product_id)


@router.post("", response_model=ProductRead, status_code=201)
def create_product(
    payload: ProductCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    data = payload.model_dump(exclude={"stock_quantity"})
    data["unit_price"] = Decimal(str(data["unit_price"]))
    return catalog.create_product(db, ctx, catalog.ProductInput(**data), initial_stock=payload.stock_quantity)


@router.put("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: int,
    payload: ProductUpdate,
    _: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    # colonnes NOT NULL : un null explicite est ignoré
    for key in ("sku", "name", "reorder_level", "unit_price"):
        if key in changes and changes[key] is None:
            del changes[key]
    if "unit_price" in changes:
        changes["unit_price"] = Decimal(str(changes["unit_price"]))
    return catalog.update_product(db, product_id, changes)


@router.delete("/{product_id}")
def delete_product(product_id: int, _: RequestContext = Depends(require_admin), db: Session = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product removed"}


@router.patch("/{product_id}/stock", response_model=StockMovementRead)
def adjust_stock(
    product_id: int,
    payload: StockAdjust,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return inventory.adjust_stock(
        db,
        ctx,
        product_id=product_id,
        adjustment=payload.adjustment,
        reason=payload.reason,
    )
