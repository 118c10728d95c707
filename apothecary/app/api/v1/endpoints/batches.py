from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import BatchStatus
from apothecary.app.schemas.batch import BatchRead
from apothecary.services import batches

router = APIRouter(prefix="/batches")


class BatchCreate(BaseModel):
    product_id: int
    batch_number: str = Field(min_length=1, max_length=64)
    expiry_date: date
    initial_quantity: int = Field(ge=0)
    supplier_id: int | None = None
    manufacturing_date: date | None = None
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    barcode: str | None = Field(default=None, max_length=128)
    qr_code: str | None = Field(default=None, max_length=255)
    notes: str | None = None
    update_product_stock: bool = False


class BatchUpdate(BaseModel):
    supplier_id: int | None = None
    manufacturing_date: date | None = None
    expiry_date: date | None = None
    unit_cost: Decimal | None = Field(default=None, ge=0)
    status: BatchStatus | None = None
    barcode: str | None = Field(default=None, max_length=128)
    qr_code: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class BatchQuantityAdjust(BaseModel):
    adjustment: int
    reason: str | None = None


@router.get("")
def list_batches(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    product_id: int | None = None,
    supplier_id: int | None = None,
    status: BatchStatus | None = None,
    expiry_status: Literal["expired", "expiring", "active"] | None = None,
    sort_by: str = "expiry_date",
    sort_order: Literal["asc", "desc"] = "asc",
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    result = batches.list_batches(
        db,
        page=page,
        limit=limit,
        product_id=product_id,
        supplier_id=supplier_id,
        status=status,
        expiry_status=expiry_status,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result["batches"] = [BatchRead.model_validate(b) for b in result["batches"]]
    return result


# routes fixes déclarées avant /{batch_id}
@router.get("/analytics")
def batch_analytics(_: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return batches.analytics(db)


@router.get("/expiring", response_model=list[BatchRead])
def expiring(
    days: int = Query(default=batches.EXPIRY_WINDOW_DAYS, ge=1, le=365),
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return batches.expiring_batches(db, days=days)


@router.get("/expired", response_model=list[BatchRead])
def expired(_: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return batches.expired_batches(db)


@router.get("/scan/{code_type}/{code}", response_model=BatchRead)
def scan(
    code_type: Literal["barcode", "qr"],
    code: str,
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return batches.find_by_code(db, code_type, code)


@router.get("/{batch_id}", response_model=BatchRead)
def get_batch(batch_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return batches.get_batch(db, batch_id)


@router.post("", response_model=BatchRead, status_code=201)
def create_batch(
    payload: BatchCreate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    data = batches.BatchInput(**payload.model_dump(exclude={"update_product_stock"}))
    return batches.create_batch(db, ctx, data, update_product_stock=payload.update_product_stock)


@router.put("/{batch_id}", response_model=BatchRead)
def update_batch(
    batch_id: int,
    payload: BatchUpdate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return batches.update_batch(db, ctx, batch_id, payload.model_dump(exclude_unset=True))


@router.patch("/{batch_id}/quantity", response_model=BatchRead)
def adjust_quantity(
    batch_id: int,
    payload: BatchQuantityAdjust,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return batches.adjust_batch_quantity(db, ctx, batch_id, payload.adjustment, payload.reason)
