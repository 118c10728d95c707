from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import SupplierStatus


class ProductRead(BaseModel):
    id: int
    sku: str
    name: str
    generic_name: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None

    stock_quantity: int  # READ ONLY : écrit uniquement par le journal
    reorder_level: int
    unit_price: float

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SupplierRead(BaseModel):
    id: int
    name: str
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    tax_id: str | None = None
    is_jan_aushadhi: bool
    payment_terms: str | None = None
    rating: int
    status: SupplierStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
