from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import MovementSource, MovementType, SupplierStatus
from apothecary.app.db.models.models_v1 import Product, PurchaseOrder, PurchaseOrderItem, StockMovement, Supplier
from apothecary.services.errors import ConflictError, NotFoundError
from apothecary.services.inventory import record_movement

logger = structlog.get_logger(__name__)


# ---------- PRODUCTS ----------
@dataclass
class ProductInput:
    sku: str
    name: str
    generic_name: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    reorder_level: int = 0
    unit_price: Decimal = Decimal("0")


def list_products(db: Session, *, low_stock_only: bool = False) -> list[Product]:
    stmt = select(Product).order_by(Product.name)
    if low_stock_only:
        stmt = stmt.where(Product.stock_quantity <= Product.reorder_level)
    return list(db.execute(stmt).scalars().all())


def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def create_product(
    db: Session,
    ctx: RequestContext,
    payload: ProductInput,
    initial_stock: int = 0,
) -> Product:
    exists = db.execute(select(Product).where(Product.sku == payload.sku)).scalar_one_or_none()
    if exists:
        raise ConflictError("SKU already exists")

    try:
        product = Product(stock_quantity=0, **{f.name: getattr(payload, f.name) for f in fields(payload)})
        db.add(product)
        db.flush()

        # le stock d'ouverture passe aussi par le journal
        if initial_stock > 0:
            record_movement(
                db,
                product=product,
                movement_type=MovementType.stock_in,
                quantity=initial_stock,
                reason="Opening stock",
                created_by=ctx.user_id,
                source=MovementSource.manual,
                batch_number=payload.batch_number,
                expiry_date=payload.expiry_date,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(product)
    logger.info("product.created", product_id=product.id, sku=product.sku, initial_stock=initial_stock)
    return product


def update_product(db: Session, product_id: int, changes: dict) -> Product:
    """stock_quantity n'est jamais modifiable ici (voir services.inventory)."""
    product = get_product(db, product_id)
    changes = {k: v for k, v in changes.items() if k != "stock_quantity"}

    new_sku = changes.get("sku")
    if new_sku and new_sku != product.sku:
        clash = db.execute(select(Product).where(Product.sku == new_sku)).scalar_one_or_none()
        if clash:
            raise ConflictError("SKU already exists")

    try:
        for key, value in changes.items():
            setattr(product, key, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(product)
    return product


def delete_product(db: Session, product_id: int) -> None:
    product = get_product(db, product_id)

    # le journal est append-only : un produit mouvementé ne disparaît pas
    movements = db.execute(
        select(func.count(StockMovement.id)).where(StockMovement.product_id == product_id)
    ).scalar_one()
    po_lines = db.execute(
        select(func.count(PurchaseOrderItem.id)).where(PurchaseOrderItem.product_id == product_id)
    ).scalar_one()
    if movements or po_lines:
        raise ConflictError("Product has stock movements or purchase order lines and cannot be deleted")

    try:
        db.delete(product)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("product.deleted", product_id=product_id)


# ---------- SUPPLIERS ----------
@dataclass
class SupplierInput:
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
    is_jan_aushadhi: bool = False
    payment_terms: str | None = None
    rating: int = 3
    status: SupplierStatus = SupplierStatus.active


def list_suppliers(db: Session, *, is_jan_aushadhi: bool | None = None) -> list[Supplier]:
    stmt = select(Supplier).order_by(Supplier.name)
    if is_jan_aushadhi is not None:
        stmt = stmt.where(Supplier.is_jan_aushadhi == is_jan_aushadhi)
    return list(db.execute(stmt).scalars().all())


def get_supplier(db: Session, supplier_id: int) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier not found")
    return supplier


def create_supplier(db: Session, payload: SupplierInput) -> Supplier:
    data = {f.name: getattr(payload, f.name) for f in fields(payload)}
    if data.get("email"):
        data["email"] = data["email"].strip().lower()

    s = Supplier(**data)
    db.add(s)
    db.commit()
    db.refresh(s)
    logger.info("supplier.created", supplier_id=s.id, name=s.name)
    return s


def update_supplier(db: Session, supplier_id: int, changes: dict) -> Supplier:
    s = get_supplier(db, supplier_id)
    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()
    for key, value in changes.items():
        setattr(s, key, value)
    db.commit()
    db.refresh(s)
    return s


def delete_supplier(db: Session, supplier_id: int) -> None:
    s = get_supplier(db, supplier_id)
    used = db.execute(
        select(func.count(PurchaseOrder.id)).where(PurchaseOrder.supplier_id == supplier_id)
    ).scalar_one()
    if used:
        raise ConflictError("Supplier is referenced by purchase orders; set it inactive instead")

    db.delete(s)
    db.commit()
    logger.info("supplier.deleted", supplier_id=supplier_id)
