from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import DistributionStatus, RecipientType
from apothecary.app.schemas.distribution import DistributionRead
from apothecary.services import distribution

router = APIRouter(prefix="/distributions")


class DistributionItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    batch_number: str | None = None
    expiry_date: date | None = None


class DistributionCreate(BaseModel):
    recipient: str = Field(min_length=1, max_length=255)
    recipient_type: RecipientType
    shipping_address: str | None = None
    contact_person: str | None = None
    contact_number: str | None = None
    items: list[DistributionItemCreate] = Field(default_factory=list)


class DistributionStatusUpdate(BaseModel):
    status: DistributionStatus


# déclaré avant /{distribution_id}
@router.get("/reports/summary")
def summary(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    top: int = Query(default=10, ge=1, le=100),
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return distribution.distribution_summary(db, start_date=start_date, end_date=end_date, top=top)


@router.get("", response_model=list[DistributionRead])
def list_distributions(
    status: DistributionStatus | None = None,
    recipient: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return distribution.list_distributions(
        db,
        status=status,
        recipient=recipient,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/{distribution_id}", response_model=DistributionRead)
def get_distribution(distribution_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return distribution.get_distribution(db, distribution_id)


@router.post("", response_model=DistributionRead, status_code=201)
def create_distribution(
    payload: DistributionCreate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    data = distribution.DistributionInput(
        recipient=payload.recipient,
        recipient_type=payload.recipient_type,
        items=[distribution.DistributionItemInput(**it.model_dump()) for it in payload.items],
        shipping_address=payload.shipping_address,
        contact_person=payload.contact_person,
        contact_number=payload.contact_number,
    )
    return distribution.create_distribution(db, ctx, data)


@router.patch("/{distribution_id}/status", response_model=DistributionRead)
def update_status(
    distribution_id: int,
    payload: DistributionStatusUpdate,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return distribution.transition_distribution(db, ctx, distribution_id, payload.status)


@router.delete("/{distribution_id}")
def delete_distribution(
    distribution_id: int,
    ctx: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    distribution.delete_distribution(db, ctx, distribution_id)
    return {"message": "Distribution order deleted"}
