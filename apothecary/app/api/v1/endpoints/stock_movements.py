from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import MovementType
from apothecary.app.schemas.stock_movement import StockMovementRead
from apothecary.services import inventory

router = APIRouter(prefix="/stock-movements")


class MovementCreate(BaseModel):
    product_id: int
    type: MovementType
    quantity: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=255)
    batch_number: str | None = None
    expiry_date: date | None = None


@router.get("", response_model=list[StockMovementRead])
def list_movements(_: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return inventory.list_movements(db)


@router.get("/product/{product_id}", response_model=list[StockMovementRead])
def list_product_movements(product_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return inventory.list_movements(db, product_id=product_id)


@router.get("/product/{product_id}/verify")
def verify_product_ledger(product_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return inventory.verify_ledger(db, product_id)


@router.post("", response_model=StockMovementRead, status_code=201)
def create_movement(
    payload: MovementCreate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return inventory.create_manual_movement(
        db,
        ctx,
        product_id=payload.product_id,
        movement_type=payload.type,
        quantity=payload.quantity,
        reason=payload.reason,
        batch_number=payload.batch_number,
        expiry_date=payload.expiry_date,
    )
