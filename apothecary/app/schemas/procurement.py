from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import POStatus, ReceiptStatus


class PurchaseOrderItemRead(BaseModel):
    id: int
    product_id: int | None = None
    external_product_id: int | None = None
    generic_name: str
    quantity: int
    unit_price: float
    discount: float
    tax: float
    total_price: float
    received_quantity: int

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    status: POStatus
    order_date: datetime
    expected_delivery_date: date | None = None
    actual_delivery_date: datetime | None = None

    subtotal: float
    tax_amount: float
    discount_amount: float
    shipping_cost: float
    total_amount: float

    notes: str | None = None
    payment_terms: str | None = None
    created_by: int
    approved_by: int | None = None
    approval_date: datetime | None = None
    created_at: datetime
    updated_at: datetime

    items: list[PurchaseOrderItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class PurchaseReceiptItemRead(BaseModel):
    id: int
    po_item_id: int
    product_id: int | None = None
    external_product_id: int | None = None
    generic_name: str
    expected_quantity: int
    received_quantity: int
    batch_number: str
    expiry_date: date
    unit_price: float
    comments: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseReceiptRead(BaseModel):
    id: int
    receipt_number: str
    purchase_order_id: int
    receipt_date: datetime
    received_by: int
    quality_passed: bool
    quality_notes: str | None = None
    notes: str | None = None
    status: ReceiptStatus
    created_at: datetime

    items: list[PurchaseReceiptItemRead] = []

    model_config = ConfigDict(from_attributes=True)
