"""
Procurement service.

Ce module orchestre le cycle de vie des bons de commande (PO) :
création, modification en brouillon, transitions de statut.

La réception (et donc toute écriture de stock liée aux achats) est dans
apothecary.services.receiving ; la logique stock reste centralisée dans
apothecary.services.inventory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import POStatus
from apothecary.app.db.models.models_v1 import (
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseReceipt,
    Supplier,
)
from apothecary.services.errors import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

# Transitions autorisées via PATCH /status.
# received / partially_received ne sont JAMAIS posés directement :
# seule la création d'un receipt les calcule.
PO_TRANSITIONS: dict[POStatus, frozenset[POStatus]] = {
    POStatus.draft: frozenset({POStatus.submitted, POStatus.cancelled}),
    POStatus.submitted: frozenset({POStatus.approved, POStatus.cancelled}),
    POStatus.approved: frozenset({POStatus.shipped}),
    POStatus.shipped: frozenset(),
    POStatus.partially_received: frozenset(),
    POStatus.received: frozenset(),
    POStatus.cancelled: frozenset(),
}

RECEIPT_DRIVEN_STATUSES = frozenset({POStatus.received, POStatus.partially_received})
TERMINAL_PO_STATUSES = frozenset({POStatus.received, POStatus.cancelled})
# statuts pour lesquels un receipt peut être saisi
RECEIVABLE_PO_STATUSES = frozenset({POStatus.shipped, POStatus.partially_received})


@dataclass
class POItemInput:
    generic_name: str
    quantity: int
    unit_price: Decimal
    product_id: int | None = None
    external_product_id: int | None = None
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")


@dataclass
class POInput:
    supplier_id: int
    items: list[POItemInput] = field(default_factory=list)
    expected_delivery_date: date | None = None
    shipping_cost: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    notes: str | None = None
    payment_terms: str | None = None


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(item: POItemInput) -> Decimal:
    """quantity * unit_price * (1 - discount%) * (1 + tax%)"""
    d = Decimal(item.discount) / 100
    t = Decimal(item.tax) / 100
    return _money(Decimal(item.quantity) * Decimal(item.unit_price) * (1 - d) * (1 + t))


def compute_totals(items: list[POItemInput], shipping_cost: Decimal, discount_amount: Decimal) -> dict:
    tax_amount = Decimal("0")
    subtotal = Decimal("0")
    for it in items:
        total = line_total(it)
        subtotal += total
        net = Decimal(it.quantity) * Decimal(it.unit_price) * (1 - Decimal(it.discount) / 100)
        tax_amount += net * Decimal(it.tax) / 100

    return {
        "subtotal": _money(subtotal),
        "tax_amount": _money(tax_amount),
        "total_amount": _money(subtotal + Decimal(shipping_cost) - Decimal(discount_amount)),
    }


def next_document_number(db: Session, column, prefix: str, when: datetime | None = None) -> str:
    """
    PREFIX-YYMM-NNNN, compteur remis à zéro chaque mois.
    Basé sur le plus grand numéro existant pour le mois courant.
    """
    when = when or datetime.utcnow()
    stem = f"{prefix}-{when.strftime('%y%m')}-"
    last = db.execute(select(func.max(column)).where(column.like(f"{stem}%"))).scalar_one_or_none()

    number = 1
    if last:
        try:
            number = int(last.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            number = 1
    return f"{stem}{number:04d}"


def _validate_items(db: Session, items: list[POItemInput]) -> None:
    errors = []
    if not items:
        errors.append({"field": "items", "message": "at least one item is required"})

    # une seule ligne par référence : la réception rapproche ligne reçue -> ligne PO par référence
    seen: set[tuple[str, int]] = set()

    for idx, it in enumerate(items):
        if it.product_id is None and it.external_product_id is None:
            errors.append(
                {"field": f"items[{idx}]", "message": "product_id or external_product_id is required"}
            )
        elif it.product_id is not None and not db.get(Product, it.product_id):
            errors.append({"field": f"items[{idx}].product_id", "message": f"Invalid product_id {it.product_id}"})

        for kind, ref in (("product_id", it.product_id), ("external_product_id", it.external_product_id)):
            if ref is None:
                continue
            if (kind, ref) in seen:
                errors.append(
                    {"field": f"items[{idx}].{kind}", "message": f"duplicate {kind} {ref}: merge the quantities on one line"}
                )
            seen.add((kind, ref))
        if it.quantity is None or it.quantity <= 0:
            errors.append({"field": f"items[{idx}].quantity", "message": "must be greater than 0"})
        if it.unit_price is None or Decimal(it.unit_price) < 0:
            errors.append({"field": f"items[{idx}].unit_price", "message": "must be >= 0"})

    if errors:
        raise ValidationError("Invalid purchase order items", errors=errors)


def _build_items(items: list[POItemInput]) -> list[PurchaseOrderItem]:
    return [
        PurchaseOrderItem(
            product_id=it.product_id,
            external_product_id=it.external_product_id,
            generic_name=it.generic_name,
            quantity=it.quantity,
            unit_price=_money(it.unit_price),
            discount=Decimal(it.discount),
            tax=Decimal(it.tax),
            total_price=line_total(it),
            received_quantity=0,
        )
        for it in items
    ]


def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError("Purchase order not found")
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: POStatus | None = None,
    supplier_id: int | None = None,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    return list(db.execute(stmt).scalars().all())


def create_purchase_order(db: Session, ctx: RequestContext, payload: POInput) -> PurchaseOrder:
    # FK checks (fail fast, message clair)
    if not db.get(Supplier, payload.supplier_id):
        raise ValidationError(
            "Invalid supplier_id",
            errors=[{"field": "supplier_id", "message": f"Supplier {payload.supplier_id} not found"}],
        )
    _validate_items(db, payload.items)

    totals = compute_totals(payload.items, payload.shipping_cost, payload.discount_amount)

    try:
        po = PurchaseOrder(
            po_number=next_document_number(db, PurchaseOrder.po_number, "PO"),
            supplier_id=payload.supplier_id,
            status=POStatus.draft,
            expected_delivery_date=payload.expected_delivery_date,
            shipping_cost=_money(payload.shipping_cost),
            discount_amount=_money(payload.discount_amount),
            notes=payload.notes,
            payment_terms=payload.payment_terms,
            created_by=ctx.user_id,
            **totals,
        )
        po.items = _build_items(payload.items)
        db.add(po)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    logger.info("purchase_order.created", po_id=po.id, po_number=po.po_number, items=len(payload.items))
    return po


def update_purchase_order(db: Session, ctx: RequestContext, po_id: int, payload: POInput) -> PurchaseOrder:
    """
    Modification du contenu d'un PO (jamais du statut).
    - staff : brouillon uniquement
    - admin : tout PO non terminal sans réception
    """
    po = get_purchase_order(db, po_id)

    if po.status != POStatus.draft:
        if not ctx.is_admin:
            raise PermissionDeniedError("Cannot update purchase order that is not in draft status")
        has_receipts = db.execute(
            select(func.count(PurchaseReceipt.id)).where(PurchaseReceipt.purchase_order_id == po.id)
        ).scalar_one()
        if po.status in TERMINAL_PO_STATUSES or has_receipts:
            raise ValidationError(f"Cannot update purchase order in status {po.status.value}")

    if not db.get(Supplier, payload.supplier_id):
        raise ValidationError(
            "Invalid supplier_id",
            errors=[{"field": "supplier_id", "message": f"Supplier {payload.supplier_id} not found"}],
        )
    _validate_items(db, payload.items)

    totals = compute_totals(payload.items, payload.shipping_cost, payload.discount_amount)

    try:
        po.supplier_id = payload.supplier_id
        po.expected_delivery_date = payload.expected_delivery_date
        po.shipping_cost = _money(payload.shipping_cost)
        po.discount_amount = _money(payload.discount_amount)
        po.notes = payload.notes
        po.payment_terms = payload.payment_terms
        po.subtotal = totals["subtotal"]
        po.tax_amount = totals["tax_amount"]
        po.total_amount = totals["total_amount"]
        po.items = _build_items(payload.items)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    logger.info("purchase_order.updated", po_id=po.id, by=ctx.user_id)
    return po


def check_transition(current: POStatus, target: POStatus, ctx: RequestContext) -> None:
    """Lève si current -> target n'est pas permis pour cet appelant. Pur, sans DB."""
    if target in RECEIPT_DRIVEN_STATUSES:
        raise ValidationError(
            f"Cannot transition from {current.value} to {target.value}: "
            "received statuses are set by purchase receipts only",
            errors=[{"field": "status", "message": f"{current.value} -> {target.value} not allowed"}],
        )

    if target not in PO_TRANSITIONS.get(current, frozenset()):
        raise ValidationError(
            f"Cannot transition from {current.value} to {target.value}",
            errors=[{"field": "status", "message": f"{current.value} -> {target.value} not allowed"}],
        )

    if target == POStatus.approved and not ctx.is_admin:
        raise PermissionDeniedError("Only admins can approve purchase orders")


def transition_purchase_order(
    db: Session,
    ctx: RequestContext,
    po_id: int,
    target: POStatus,
) -> PurchaseOrder:
    po = (
        db.execute(select(PurchaseOrder).where(PurchaseOrder.id == po_id).with_for_update())
        .scalar_one_or_none()
    )
    if not po:
        raise NotFoundError("Purchase order not found")

    current = po.status
    check_transition(current, target, ctx)

    try:
        if target == POStatus.approved:
            po.approved_by = ctx.user_id
            po.approval_date = datetime.utcnow()
        po.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    logger.info(
        "purchase_order.transitioned",
        po_id=po.id,
        from_status=current.value,
        to_status=target.value,
        by=ctx.user_id,
    )
    return po
