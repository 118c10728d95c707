from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import POStatus
from apothecary.app.schemas.procurement import PurchaseOrderRead
from apothecary.services import procurement

router = APIRouter(prefix="/purchase-orders")


class POItemCreate(BaseModel):
    product_id: int | None = None
    external_product_id: int | None = None
    generic_name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tax: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class POCreate(BaseModel):
    supplier_id: int
    expected_delivery_date: date | None = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None
    payment_terms: str | None = None
    items: list[POItemCreate] = Field(min_length=1)


class POStatusUpdate(BaseModel):
    status: POStatus


def _to_input(payload: POCreate) -> procurement.POInput:
    return procurement.POInput(
        supplier_id=payload.supplier_id,
        items=[procurement.POItemInput(**it.model_dump()) for it in payload.items],
        expected_delivery_date=payload.expected_delivery_date,
        shipping_cost=payload.shipping_cost,
        discount_amount=payload.discount_amount,
        notes=payload.notes,
        payment_terms=payload.payment_terms,
    )


@router.get("", response_model=list[PurchaseOrderRead])
def list_pos(
    status: POStatus | None = None,
    supplier_id: int | None = None,
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return procurement.list_purchase_orders(db, status=status, supplier_id=supplier_id)


@router.get("/{po_id}", response_model=PurchaseOrderRead)
def get_po(po_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return procurement.get_purchase_order(db, po_id)


@router.post("", response_model=PurchaseOrderRead, status_code=201)
def create_po(payload: POCreate, ctx: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return procurement.create_purchase_order(db, ctx, _to_input(payload))


@router.put("/{po_id}", response_model=PurchaseOrderRead)
def update_po(
    po_id: int,
    payload: POCreate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return procurement.update_purchase_order(db, ctx, po_id, _to_input(payload))


@router.patch("/{po_id}/status", response_model=PurchaseOrderRead)
def update_po_status(
    po_id: int,
    payload: POStatusUpdate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return procurement.transition_purchase_order(db, ctx, po_id, payload.status)
