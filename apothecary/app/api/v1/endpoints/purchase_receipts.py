from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.schemas.procurement import PurchaseReceiptRead
from apothecary.services import receiving

router = APIRouter(prefix="/purchase-receipts")


class ReceiptItemCreate(BaseModel):
    product_id: int | None = None
    external_product_id: int | None = None
    # quantité, lot et péremption sont contrôlés par le service (erreurs par ligne)
    received_quantity: int
    batch_number: str | None = None
    expiry_date: date | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    comments: str | None = None


class ReceiptCreate(BaseModel):
    purchase_order_id: int
    receipt_date: datetime | None = None
    quality_passed: bool = True
    quality_notes: str | None = None
    notes: str | None = None
    items: list[ReceiptItemCreate] = Field(default_factory=list)


@router.get("", response_model=list[PurchaseReceiptRead])
def list_receipts(
    purchase_order_id: int | None = None,
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return receiving.list_purchase_receipts(db, purchase_order_id=purchase_order_id)


@router.get("/{receipt_id}", response_model=PurchaseReceiptRead)
def get_receipt(receipt_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return receiving.get_purchase_receipt(db, receipt_id)


@router.post("", response_model=PurchaseReceiptRead, status_code=201)
def create_receipt(
    payload: ReceiptCreate,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    data = receiving.ReceiptInput(
        purchase_order_id=payload.purchase_order_id,
        items=[receiving.ReceiptItemInput(**it.model_dump()) for it in payload.items],
        receipt_date=payload.receipt_date,
        quality_passed=payload.quality_passed,
        quality_notes=payload.quality_notes,
        notes=payload.notes,
    )
    return receiving.create_purchase_receipt(db, ctx, data, idempotency_key=idempotency_key)
