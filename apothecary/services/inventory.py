"""
Inventory service : le journal des mouvements de stock.

Règle d'or : Product.stock_quantity n'est modifié QUE par record_movement().
Chaque appel écrit exactement un StockMovement avec les instantanés
previous_stock / new_stock, dans la transaction de l'appelant.

Le journal est append-only : aucune fonction de ce module (ni aucun
endpoint) ne modifie ou ne supprime un mouvement existant.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import MovementSource, MovementType
from apothecary.app.db.models.models_v1 import Product, StockMovement
from apothecary.services.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


def get_product_for_update(db: Session, product_id: int) -> Product:
    product = (
        db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalar_one_or_none()
    )
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def record_movement(
    db: Session,
    *,
    product: Product,
    movement_type: MovementType,
    quantity: int,
    reason: str,
    created_by: int,
    source: MovementSource = MovementSource.manual,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    purchase_receipt_id: int | None = None,
    distribution_id: int | None = None,
) -> StockMovement:
    """
    Applique un mouvement sur le produit et l'inscrit au journal.

    - quantity > 0, sinon ValidationError
    - un "out" qui rendrait le stock négatif est refusé
    - ne commit PAS : l'appelant possède la transaction
    """
    if quantity is None or quantity <= 0:
        raise ValidationError(
            "Movement quantity must be greater than 0",
            errors=[{"field": "quantity", "message": "must be greater than 0"}],
        )

    previous = int(product.stock_quantity)
    if movement_type == MovementType.stock_in:
        new = previous + quantity
    else:
        new = previous - quantity
        if new < 0:
            raise ValidationError(
                f"Insufficient stock for {product.name}. Available: {previous}, Requested: {quantity}",
                errors=[{"field": "quantity", "message": f"exceeds available stock ({previous})"}],
            )

    product.stock_quantity = new

    mv = StockMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new,
        reason=reason,
        batch_number=batch_number,
        expiry_date=expiry_date,
        source=source,
        purchase_receipt_id=purchase_receipt_id,
        distribution_id=distribution_id,
        created_by=created_by,
    )
    db.add(mv)
    db.flush()

    logger.info(
        "stock.movement_recorded",
        product_id=product.id,
        movement_type=movement_type.value,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new,
        source=source.value,
    )
    return mv


def create_manual_movement(
    db: Session,
    ctx: RequestContext,
    *,
    product_id: int,
    movement_type: MovementType,
    quantity: int,
    reason: str,
    batch_number: str | None = None,
    expiry_date: date | None = None,
) -> StockMovement:
    try:
        product = get_product_for_update(db, product_id)
        mv = record_movement(
            db,
            product=product,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            created_by=ctx.user_id,
            source=MovementSource.manual,
            batch_number=batch_number,
            expiry_date=expiry_date,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(mv)
    return mv


def adjust_stock(
    db: Session,
    ctx: RequestContext,
    *,
    product_id: int,
    adjustment: int,
    reason: str | None = None,
) -> StockMovement:
    """Ajustement signé (+/-) : converti en mouvement in/out."""
    if adjustment == 0:
        raise ValidationError(
            "Adjustment must be non-zero",
            errors=[{"field": "adjustment", "message": "must be non-zero"}],
        )

    movement_type = MovementType.stock_in if adjustment > 0 else MovementType.stock_out
    return create_manual_movement(
        db,
        ctx,
        product_id=product_id,
        movement_type=movement_type,
        quantity=abs(adjustment),
        reason=reason or "Manual adjustment",
    )


def list_movements(db: Session, product_id: int | None = None) -> list[StockMovement]:
    stmt = select(StockMovement).order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    if product_id is not None:
        stmt = stmt.where(StockMovement.product_id == product_id)
    return list(db.execute(stmt).scalars().all())


def replay_stock(movements: Iterable[StockMovement], initial: int = 0) -> int:
    """
    Rejoue les mouvements (ordre created_at, puis id) depuis un stock initial.

    Chaque instantané doit s'enchaîner : previous_stock == total courant,
    new_stock == previous_stock +/- quantity. Une chaîne cassée lève
    ValidationError avec l'id du mouvement fautif.
    """
    ordered = sorted(movements, key=lambda m: (m.created_at, m.id))
    running = initial
    for mv in ordered:
        delta = mv.quantity if mv.movement_type == MovementType.stock_in else -mv.quantity
        if mv.previous_stock != running or mv.new_stock != running + delta:
            raise ValidationError(
                f"Stock ledger broken at movement {mv.id}",
                errors=[
                    {
                        "field": "previous_stock",
                        "message": f"expected {running}, found {mv.previous_stock}",
                    }
                ],
            )
        running += delta
    return running


def verify_ledger(db: Session, product_id: int) -> dict:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    movements = (
        db.execute(select(StockMovement).where(StockMovement.product_id == product_id))
        .scalars()
        .all()
    )
    replayed = replay_stock(movements)
    return {
        "product_id": product.id,
        "stock_quantity": product.stock_quantity,
        "replayed_stock": replayed,
        "movement_count": len(movements),
        "consistent": replayed == product.stock_quantity,
    }
