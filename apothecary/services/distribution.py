"""
Distribution service : sorties de stock vers un destinataire
(patient, pharmacie, service, hôpital).

- création : stock vérifié pour TOUTES les lignes avant la moindre écriture,
  puis un mouvement "out" par ligne, dans la même transaction que l'ordre
- chaque ligne prélève ses lots (FEFO, ou le lot imposé) : DistributionAllocation
- returned / cancelled : remise en stock (mouvement "in") et dans les lots, par ligne
- suppression : uniquement en "pending", avec remise en stock
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from collections import defaultdict

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import DistributionStatus, MovementSource, MovementType, RecipientType
from apothecary.app.db.models.models_v1 import Distribution, DistributionItem, Product
from apothecary.services import batches
from apothecary.services.errors import NotFoundError, ValidationError
from apothecary.services.inventory import get_product_for_update, record_movement

logger = structlog.get_logger(__name__)

DISTRIBUTION_TRANSITIONS: dict[DistributionStatus, frozenset[DistributionStatus]] = {
    DistributionStatus.pending: frozenset(
        {DistributionStatus.processed, DistributionStatus.returned, DistributionStatus.cancelled}
    ),
    DistributionStatus.processed: frozenset(
        {DistributionStatus.shipped, DistributionStatus.returned, DistributionStatus.cancelled}
    ),
    DistributionStatus.shipped: frozenset(
        {DistributionStatus.delivered, DistributionStatus.returned, DistributionStatus.cancelled}
    ),
    DistributionStatus.delivered: frozenset({DistributionStatus.returned}),
    DistributionStatus.returned: frozenset(),
    DistributionStatus.cancelled: frozenset(),
}

RESTOCKING_STATUSES = frozenset({DistributionStatus.returned, DistributionStatus.cancelled})


@dataclass
class DistributionItemInput:
    product_id: int
    quantity: int
    batch_number: str | None = None
    expiry_date: date | None = None


@dataclass
class DistributionInput:
    recipient: str
    recipient_type: RecipientType
    items: list[DistributionItemInput] = field(default_factory=list)
    shipping_address: str | None = None
    contact_person: str | None = None
    contact_number: str | None = None


def next_order_number(db: Session, when: datetime | None = None) -> str:
    """DO-YYYYMMDD-NNNN, compteur journalier."""
    when = when or datetime.utcnow()
    stem = f"DO-{when.strftime('%Y%m%d')}-"
    last = db.execute(
        select(func.max(Distribution.order_number)).where(Distribution.order_number.like(f"{stem}%"))
    ).scalar_one_or_none()

    counter = 1
    if last:
        try:
            counter = int(last.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            counter = 1
    return f"{stem}{counter:04d}"


def _validate_availability(db: Session, items: list[DistributionItemInput]) -> dict[int, Product]:
    errors: list[dict] = []
    products: dict[int, Product] = {}

    if not items:
        errors.append({"field": "items", "message": "at least one item is required"})

    # deux lignes du même produit consomment le même stock
    requested: dict[int, int] = defaultdict(int)
    for idx, it in enumerate(items):
        if it.quantity is None or it.quantity <= 0:
            errors.append({"field": f"items[{idx}].quantity", "message": "must be greater than 0"})
            continue

        product = products.get(it.product_id) or db.get(Product, it.product_id)
        if not product:
            errors.append({"field": f"items[{idx}].product_id", "message": f"Product with ID {it.product_id} not found"})
            continue
        products[product.id] = product

        requested[product.id] += it.quantity
        if product.stock_quantity < requested[product.id]:
            errors.append(
                {
                    "field": f"items[{idx}].quantity",
                    "message": (
                        f"Insufficient stock for {product.name}. "
                        f"Available: {product.stock_quantity}, Requested: {requested[product.id]}"
                    ),
                }
            )

    # lot imposé : il doit exister, être utilisable et couvrir le cumul demandé
    today = date.today()
    per_lot = batches.requested_per_batch([(it.product_id, it.batch_number, it.quantity) for it in items])
    for idx, it in enumerate(items):
        if not it.batch_number or it.product_id not in products:
            continue
        key = (it.product_id, it.batch_number.strip())
        if key not in per_lot:
            continue
        lot = batches.find_batch(db, *key)
        available = lot.current_quantity if lot is not None and batches.is_available(lot, today) else 0
        if available < per_lot.pop(key):
            errors.append(
                {
                    "field": f"items[{idx}].batch_number",
                    "message": f"Batch {key[1]} cannot supply the requested quantity. Available: {available}",
                }
            )

    if errors:
        raise ValidationError("Invalid distribution order", errors=errors)
    return products


def create_distribution(db: Session, ctx: RequestContext, payload: DistributionInput) -> Distribution:
    if not payload.recipient or not payload.recipient.strip():
        raise ValidationError(
            "Recipient is required",
            errors=[{"field": "recipient", "message": "required"}],
        )
    _validate_availability(db, payload.items)

    try:
        dist = Distribution(
            order_number=next_order_number(db),
            recipient=payload.recipient.strip(),
            recipient_type=payload.recipient_type,
            status=DistributionStatus.pending,
            shipping_address=payload.shipping_address,
            contact_person=payload.contact_person,
            contact_number=payload.contact_number,
            created_by=ctx.user_id,
        )
        dist.items = [
            DistributionItem(
                product_id=it.product_id,
                quantity=it.quantity,
                batch_number=it.batch_number,
                expiry_date=it.expiry_date,
            )
            for it in payload.items
        ]
        db.add(dist)
        db.flush()

        for item in dist.items:
            # relecture verrouillée : le contrôle ci-dessus peut être périmé
            product = get_product_for_update(db, item.product_id)
            item.allocations = batches.draw_down(
                db,
                product_id=item.product_id,
                quantity=item.quantity,
                batch_number=item.batch_number,
            )
            if item.batch_number:
                item.expiry_date = batches.find_batch(db, item.product_id, item.batch_number).expiry_date
            record_movement(
                db,
                product=product,
                movement_type=MovementType.stock_out,
                quantity=item.quantity,
                reason=(
                    f"Distribution to {payload.recipient_type.value}: {dist.recipient} "
                    f"(Order: {dist.order_number})"
                ),
                created_by=ctx.user_id,
                source=MovementSource.distribution,
                batch_number=item.batch_number,
                expiry_date=item.expiry_date,
                distribution_id=dist.id,
            )

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(dist)
    logger.info("distribution.created", distribution_id=dist.id, order_number=dist.order_number, items=len(payload.items))
    return dist


def _restock(db: Session, ctx: RequestContext, dist: Distribution, reason: str) -> None:
    for item in dist.items:
        product = get_product_for_update(db, item.product_id)
        record_movement(
            db,
            product=product,
            movement_type=MovementType.stock_in,
            quantity=item.quantity,
            reason=reason,
            created_by=ctx.user_id,
            source=MovementSource.distribution,
            batch_number=item.batch_number,
            expiry_date=item.expiry_date,
            distribution_id=dist.id,
        )
        batches.put_back(db, item.allocations)


def get_distribution(db: Session, distribution_id: int) -> Distribution:
    dist = db.get(Distribution, distribution_id)
    if not dist:
        raise NotFoundError("Distribution order not found")
    return dist


def _get_distribution_for_update(db: Session, distribution_id: int) -> Distribution:
    # populate_existing : un statut déjà chargé dans la session peut être périmé
    dist = (
        db.execute(
            select(Distribution)
            .where(Distribution.id == distribution_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalar_one_or_none()
    )
    if not dist:
        raise NotFoundError("Distribution order not found")
    return dist


def list_distributions(
    db: Session,
    *,
    status: DistributionStatus | None = None,
    recipient: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[Distribution]:
    stmt = select(Distribution).order_by(Distribution.created_at.desc(), Distribution.id.desc())
    if status is not None:
        stmt = stmt.where(Distribution.status == status)
    if recipient:
        stmt = stmt.where(Distribution.recipient.ilike(f"%{recipient.strip()}%"))
    if start_date is not None:
        stmt = stmt.where(Distribution.created_at >= start_date)
    if end_date is not None:
        stmt = stmt.where(Distribution.created_at <= end_date)
    return list(db.execute(stmt).scalars().all())


def transition_distribution(
    db: Session,
    ctx: RequestContext,
    distribution_id: int,
    target: DistributionStatus,
) -> Distribution:
    dist = _get_distribution_for_update(db, distribution_id)
    current = dist.status

    if target not in DISTRIBUTION_TRANSITIONS[current]:
        raise ValidationError(
            f"Cannot transition from {current.value} to {target.value}",
            errors=[{"field": "status", "message": f"{current.value} -> {target.value} not allowed"}],
        )

    try:
        if target in RESTOCKING_STATUSES:
            label = "Return" if target == DistributionStatus.returned else "Cancellation"
            _restock(db, ctx, dist, f"{label} of distribution {dist.order_number}")
        if target == DistributionStatus.delivered:
            dist.delivered_at = datetime.utcnow()
        dist.status = target
        dist.updated_at = datetime.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(dist)
    logger.info(
        "distribution.transitioned",
        distribution_id=dist.id,
        from_status=current.value,
        to_status=target.value,
        by=ctx.user_id,
    )
    return dist


def delete_distribution(db: Session, ctx: RequestContext, distribution_id: int) -> None:
    dist = _get_distribution_for_update(db, distribution_id)
    if dist.status != DistributionStatus.pending:
        raise ValidationError("Only pending distribution orders can be deleted")

    order_number = dist.order_number
    try:
        _restock(db, ctx, dist, f"Deletion of distribution order {order_number}")
        db.delete(dist)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("distribution.deleted", distribution_id=distribution_id, order_number=order_number)


def distribution_summary(
    db: Session,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    top: int = 10,
) -> dict:
    filters = []
    if start_date is not None:
        filters.append(Distribution.created_at >= start_date)
    if end_date is not None:
        filters.append(Distribution.created_at <= end_date)

    status_rows = db.execute(
        select(Distribution.status, func.count(Distribution.id))
        .where(*filters)
        .group_by(Distribution.status)
    ).all()

    recipient_rows = db.execute(
        select(Distribution.recipient, func.count(Distribution.id).label("cnt"))
        .where(*filters)
        .group_by(Distribution.recipient)
        .order_by(func.count(Distribution.id).desc(), Distribution.recipient)
        .limit(top)
    ).all()

    product_rows = db.execute(
        select(
            Product.id,
            Product.name,
            func.sum(DistributionItem.quantity).label("total_quantity"),
        )
        .join(DistributionItem, DistributionItem.product_id == Product.id)
        .join(Distribution, Distribution.id == DistributionItem.distribution_id)
        .where(*filters)
        .group_by(Product.id, Product.name)
        .order_by(func.sum(DistributionItem.quantity).desc(), Product.id)
        .limit(top)
    ).all()

    return {
        "status_counts": {status.value: int(cnt) for status, cnt in status_rows},
        "top_recipients": [{"recipient": r, "count": int(c)} for r, c in recipient_rows],
        "top_products": [
            {"product_id": int(pid), "name": name, "total_quantity": int(qty)}
            for pid, name, qty in product_rows
        ],
    }
