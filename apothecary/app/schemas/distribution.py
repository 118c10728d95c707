from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import DistributionStatus, RecipientType


class DistributionAllocationRead(BaseModel):
    batch_id: int
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class DistributionItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    batch_number: str | None = None
    expiry_date: date | None = None
    allocations: list[DistributionAllocationRead] = []

    model_config = ConfigDict(from_attributes=True)


class DistributionRead(BaseModel):
    id: int
    order_number: str
    recipient: str
    recipient_type: RecipientType
    status: DistributionStatus
    shipping_address: str | None = None
    contact_person: str | None = None
    contact_number: str | None = None
    created_by: int
    created_at: datetime
    updated_at: datetime
    delivered_at: datetime | None = None

    items: list[DistributionItemRead] = []

    model_config = ConfigDict(from_attributes=True)
