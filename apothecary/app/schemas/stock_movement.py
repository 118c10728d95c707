from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import MovementSource, MovementType


class StockMovementRead(BaseModel):
    id: int
    product_id: int
    movement_type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    batch_number: str | None = None
    expiry_date: date | None = None
    source: MovementSource
    purchase_receipt_id: int | None = None
    distribution_id: int | None = None
    created_by: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
