"""
Réception des marchandises (Purchase Receipt) contre un PO.

Tout-ou-rien :
1. on valide TOUTES les lignes (lot, péremption, quantités, rattachement PO)
2. seulement ensuite on écrit : receipt, mouvements "in", lots, received_quantity
3. on recalcule le statut du PO (received / partially_received)
4. un seul commit ; n'importe quelle erreur => rollback complet

Le receipt est immuable une fois créé.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import MovementSource, MovementType, POStatus, ReceiptStatus
from apothecary.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseReceipt,
    PurchaseReceiptItem,
)
from apothecary.services import batches
from apothecary.services.errors import ConflictError, NotFoundError, ValidationError
from apothecary.services.inventory import get_product_for_update, record_movement
from apothecary.services.procurement import RECEIVABLE_PO_STATUSES, next_document_number

logger = structlog.get_logger(__name__)


@dataclass
class ReceiptItemInput:
    received_quantity: int
    batch_number: str | None
    expiry_date: date | None
    product_id: int | None = None
    external_product_id: int | None = None
    unit_price: Decimal | None = None
    comments: str | None = None


@dataclass
class ReceiptInput:
    purchase_order_id: int
    items: list[ReceiptItemInput] = field(default_factory=list)
    receipt_date: datetime | None = None
    quality_passed: bool = True
    quality_notes: str | None = None
    notes: str | None = None


def _match_po_item(po: PurchaseOrder, item: ReceiptItemInput) -> PurchaseOrderItem | None:
    for po_item in po.items:
        if item.product_id is not None and po_item.product_id == item.product_id:
            return po_item
        if item.external_product_id is not None and po_item.external_product_id == item.external_product_id:
            return po_item
    return None


def _find_by_idempotency_key(db: Session, key: str) -> PurchaseReceipt | None:
    return db.execute(
        select(PurchaseReceipt).where(PurchaseReceipt.idempotency_key == key)
    ).scalar_one_or_none()


def validate_receipt(po: PurchaseOrder, items: list[ReceiptItemInput]) -> list[PurchaseOrderItem]:
    """
    Valide toutes les lignes sans rien écrire.
    Retourne la ligne PO correspondant à chaque ligne reçue (même ordre).
    Lève ValidationError avec la liste complète des erreurs par champ.
    """
    errors: list[dict] = []
    matched: list[PurchaseOrderItem | None] = []

    if not items:
        errors.append({"field": "items", "message": "at least one item is required"})

    # cumul par ligne PO : deux lignes reçues du même produit partagent le restant
    requested: dict[int, int] = defaultdict(int)

    for idx, it in enumerate(items):
        prefix = f"items[{idx}]"

        po_item = _match_po_item(po, it)
        matched.append(po_item)
        if po_item is None:
            ref = it.product_id if it.product_id is not None else it.external_product_id
            errors.append({"field": prefix, "message": f"Item {ref} not found in purchase order"})

        if not it.batch_number or not it.batch_number.strip():
            errors.append({"field": f"{prefix}.batch_number", "message": "batch number is required"})
        if it.expiry_date is None:
            errors.append({"field": f"{prefix}.expiry_date", "message": "expiry date is required"})

        if it.received_quantity is None or it.received_quantity <= 0:
            errors.append({"field": f"{prefix}.received_quantity", "message": "must be greater than 0"})
        elif po_item is not None:
            requested[po_item.id] += it.received_quantity
            remaining = po_item.quantity - po_item.received_quantity
            if requested[po_item.id] > remaining:
                errors.append(
                    {
                        "field": f"{prefix}.received_quantity",
                        "message": f"exceeds remaining quantity ({remaining}) for {po_item.generic_name}",
                    }
                )

    if errors:
        raise ValidationError("Invalid purchase receipt", errors=errors)

    return [m for m in matched if m is not None]


def compute_po_status(po: PurchaseOrder) -> POStatus:
    if all(it.received_quantity >= it.quantity for it in po.items):
        return POStatus.received
    return POStatus.partially_received


def create_purchase_receipt(
    db: Session,
    ctx: RequestContext,
    payload: ReceiptInput,
    idempotency_key: str | None = None,
) -> PurchaseReceipt:
    key = idempotency_key.strip() if idempotency_key and idempotency_key.strip() else None

    # Fast path : receipt déjà créé -> retour direct (pas de double stock)
    if key:
        existing = _find_by_idempotency_key(db, key)
        if existing:
            logger.info("receipt.replayed", receipt_id=existing.id, idempotency_key=key)
            return existing

    po = (
        db.execute(select(PurchaseOrder).where(PurchaseOrder.id == payload.purchase_order_id).with_for_update())
        .scalar_one_or_none()
    )
    if not po:
        raise NotFoundError("Purchase order not found")

    if po.status not in RECEIVABLE_PO_STATUSES:
        raise ValidationError(
            "Purchase order must be in shipped or partially received status",
            errors=[{"field": "purchase_order_id", "message": f"status is {po.status.value}"}],
        )

    po_items = validate_receipt(po, payload.items)
    lot_errors = batches.lot_conflicts(
        db,
        [
            (f"items[{idx}]", po_item.product_id, it.batch_number, it.expiry_date)
            for idx, (it, po_item) in enumerate(zip(payload.items, po_items))
            if po_item.product_id is not None
        ],
    )
    if lot_errors:
        raise ValidationError("Invalid purchase receipt", errors=lot_errors)

    try:
        receipt = PurchaseReceipt(
            receipt_number=next_document_number(db, PurchaseReceipt.receipt_number, "GRN"),
            purchase_order_id=po.id,
            receipt_date=payload.receipt_date or datetime.utcnow(),
            received_by=ctx.user_id,
            quality_passed=payload.quality_passed,
            quality_notes=payload.quality_notes,
            notes=payload.notes,
            idempotency_key=key,
        )
        db.add(receipt)
        db.flush()

        for it, po_item in zip(payload.items, po_items):
            db.add(
                PurchaseReceiptItem(
                    receipt_id=receipt.id,
                    po_item_id=po_item.id,
                    product_id=po_item.product_id,
                    external_product_id=po_item.external_product_id,
                    generic_name=po_item.generic_name,
                    expected_quantity=po_item.quantity - po_item.received_quantity,
                    received_quantity=it.received_quantity,
                    batch_number=it.batch_number.strip(),
                    expiry_date=it.expiry_date,
                    unit_price=it.unit_price if it.unit_price is not None else po_item.unit_price,
                    comments=it.comments,
                )
            )

            # produit connu dans notre référentiel => entrée en stock
            if po_item.product_id is not None:
                product = get_product_for_update(db, po_item.product_id)
                record_movement(
                    db,
                    product=product,
                    movement_type=MovementType.stock_in,
                    quantity=it.received_quantity,
                    reason=f"Purchase Receipt: {receipt.receipt_number}",
                    created_by=ctx.user_id,
                    source=MovementSource.receipt,
                    batch_number=it.batch_number.strip(),
                    expiry_date=it.expiry_date,
                    purchase_receipt_id=receipt.id,
                )
                batches.receive_into_batch(
                    db,
                    ctx,
                    product_id=po_item.product_id,
                    batch_number=it.batch_number,
                    expiry_date=it.expiry_date,
                    quantity=it.received_quantity,
                    unit_cost=it.unit_price if it.unit_price is not None else po_item.unit_price,
                    supplier_id=po.supplier_id,
                    purchase_receipt_id=receipt.id,
                )

            po_item.received_quantity += it.received_quantity

        po.status = compute_po_status(po)
        if po.status == POStatus.received:
            po.actual_delivery_date = receipt.receipt_date
            receipt.status = ReceiptStatus.complete
        else:
            receipt.status = ReceiptStatus.partial

        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Concurrence : deux requêtes avec la même Idempotency-Key
        if key:
            existing = _find_by_idempotency_key(db, key)
            if existing:
                return existing
        raise ConflictError("Receipt could not be recorded, please retry") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(receipt)
    logger.info(
        "receipt.posted",
        receipt_id=receipt.id,
        receipt_number=receipt.receipt_number,
        po_id=po.id,
        po_status=po.status.value,
        items=len(payload.items),
    )
    return receipt


def get_purchase_receipt(db: Session, receipt_id: int) -> PurchaseReceipt:
    receipt = db.get(PurchaseReceipt, receipt_id)
    if not receipt:
        raise NotFoundError("Receipt not found")
    return receipt


def list_purchase_receipts(db: Session, purchase_order_id: int | None = None) -> list[PurchaseReceipt]:
    stmt = select(PurchaseReceipt).order_by(PurchaseReceipt.receipt_date.desc(), PurchaseReceipt.id.desc())
    if purchase_order_id is not None:
        stmt = stmt.where(PurchaseReceipt.purchase_order_id == purchase_order_id)
    return list(db.execute(stmt).scalars().all())
