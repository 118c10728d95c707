from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import BatchStatus


class BatchRead(BaseModel):
    id: int
    batch_number: str
    product_id: int
    supplier_id: int | None = None
    manufacturing_date: date | None = None
    expiry_date: date
    initial_quantity: int
    current_quantity: int
    unit_cost: float
    status: BatchStatus
    barcode: str | None = None
    qr_code: str | None = None
    purchase_receipt_id: int | None = None
    received_date: datetime
    received_by: int | None = None
    last_modified_by: int | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
