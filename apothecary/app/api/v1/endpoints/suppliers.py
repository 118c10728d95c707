from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, require_admin, require_staff
from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import SupplierStatus
from apothecary.app.schemas.catalog import SupplierRead
from apothecary.services import catalog

router = APIRouter(prefix="/suppliers")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact_person: str | None = None
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    phone: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    tax_id: str | None = None
    is_jan_aushadhi: bool = False
    payment_terms: str | None = None
    rating: int = Field(default=3, ge=1, le=5)
    status: SupplierStatus = SupplierStatus.active


class SupplierUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_person: str | None = None
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    phone: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    tax_id: str | None = None
    is_jan_aushadhi: bool | None = None
    payment_terms: str | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    status: SupplierStatus | None = None


@router.get("", response_model=list[SupplierRead])
def list_suppliers(
    is_jan_aushadhi: bool | None = None,
    _: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return catalog.list_suppliers(db, is_jan_aushadhi=is_jan_aushadhi)


@router.get("/{supplier_id}", response_model=SupplierRead)
def get_supplier(supplier_id: int, _: RequestContext = Depends(require_staff), db: Session = Depends(get_db)):
    return catalog.get_supplier(db, supplier_id)


@router.post("", response_model=SupplierRead, status_code=201)
def create_supplier(payload: SupplierCreate, _: RequestContext = Depends(require_admin), db: Session = Depends(get_db)):
    return catalog.create_supplier(db, catalog.SupplierInput(**payload.model_dump()))


@router.put("/{supplier_id}", response_model=SupplierRead)
def update_supplier(
    supplier_id: int,
    payload: SupplierUpdate,
    _: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    for key in ("name", "is_jan_aushadhi", "rating", "status"):
        if key in changes and changes[key] is None:
            del changes[key]
    return catalog.update_supplier(db, supplier_id, changes)


@router.delete("/{supplier_id}")
def delete_supplier(supplier_id: int, _: RequestContext = Depends(require_admin), db: Session = Depends(get_db)):
    catalog.delete_supplier(db, supplier_id)
    return {"message": "Supplier removed"}
