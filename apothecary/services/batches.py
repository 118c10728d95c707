"""
Batches (lots) : traçabilité lot + péremption par produit.

- un receipt crée ou complète le lot (produit, numéro de lot)
- une distribution prélève les lots en FEFO (premier périmé, premier sorti),
  ou le lot imposé par la ligne ; retour / annulation => remise dans les mêmes lots
- les alertes de péremption partent des lots (voir services.notifications)

Product.stock_quantity reste piloté par le journal (services.inventory) ;
current_quantity ne suit que le stock rattaché à un lot. Un mouvement manuel
sans lot ne touche aucun lot.

Les fonctions de "tenue de lot" (receive_into_batch, draw_down, put_back)
ne commitent pas : elles s'exécutent dans la transaction de l'appelant.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import BatchStatus, MovementSource, MovementType
from apothecary.app.db.models.models_v1 import Batch, DistributionAllocation, Product, Supplier
from apothecary.services.errors import ConflictError, NotFoundError, ValidationError
from apothecary.services.inventory import get_product_for_update, record_movement

logger = structlog.get_logger(__name__)

EXPIRY_WINDOW_DAYS = 30

SORTABLE_COLUMNS = {
    "expiry_date": Batch.expiry_date,
    "batch_number": Batch.batch_number,
    "created_at": Batch.created_at,
    "current_quantity": Batch.current_quantity,
}

# champs modifiables par PUT ; les quantités passent par adjust_batch_quantity
UPDATABLE_FIELDS = frozenset(
    {"supplier_id", "manufacturing_date", "expiry_date", "unit_cost", "status", "barcode", "qr_code", "notes"}
)


@dataclass
class BatchInput:
    product_id: int
    batch_number: str
    expiry_date: date
    initial_quantity: int
    supplier_id: int | None = None
    manufacturing_date: date | None = None
    unit_cost: Decimal = Decimal("0")
    barcode: str | None = None
    qr_code: str | None = None
    notes: str | None = None


def sync_status(batch: Batch, today: date | None = None) -> BatchStatus:
    """recalled est posé à la main et n'est jamais recalculé."""
    today = today or date.today()
    if batch.status == BatchStatus.recalled:
        return batch.status
    if batch.current_quantity == 0:
        batch.status = BatchStatus.depleted
    elif batch.expiry_date < today:
        batch.status = BatchStatus.expired
    else:
        batch.status = BatchStatus.active
    return batch.status


def is_available(batch: Batch, today: date | None = None) -> bool:
    today = today or date.today()
    return batch.status == BatchStatus.active and batch.expiry_date >= today and batch.current_quantity > 0


def get_batch(db: Session, batch_id: int) -> Batch:
    batch = db.get(Batch, batch_id)
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


def _locked(stmt):
    return stmt.with_for_update().execution_options(populate_existing=True)


def get_batch_for_update(db: Session, batch_id: int) -> Batch:
    batch = db.execute(_locked(select(Batch).where(Batch.id == batch_id))).scalar_one_or_none()
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


def find_batch(db: Session, product_id: int, batch_number: str, *, for_update: bool = False) -> Batch | None:
    stmt = select(Batch).where(Batch.product_id == product_id, Batch.batch_number == batch_number.strip())
    if for_update:
        stmt = _locked(stmt)
    return db.execute(stmt).scalar_one_or_none()


# ---------- lectures ----------
def list_batches(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    product_id: int | None = None,
    supplier_id: int | None = None,
    status: BatchStatus | None = None,
    expiry_status: str | None = None,
    sort_by: str = "expiry_date",
    sort_order: str = "asc",
    today: date | None = None,
) -> dict:
    today = today or date.today()
    window = today + timedelta(days=EXPIRY_WINDOW_DAYS)
    page = max(page, 1)
    limit = max(limit, 1)

    column = SORTABLE_COLUMNS.get(sort_by)
    if column is None:
        raise ValidationError(
            f"Cannot sort batches by {sort_by}",
            errors=[{"field": "sort_by", "message": f"one of {sorted(SORTABLE_COLUMNS)}"}],
        )

    filters = []
    if product_id is not None:
        filters.append(Batch.product_id == product_id)
    if supplier_id is not None:
        filters.append(Batch.supplier_id == supplier_id)
    if status is not None:
        filters.append(Batch.status == status)
    if expiry_status == "expired":
        filters.append(Batch.expiry_date < today)
    elif expiry_status == "expiring":
        filters.extend([Batch.expiry_date >= today, Batch.expiry_date <= window])
    elif expiry_status == "active":
        filters.append(Batch.expiry_date > window)

    order = column.desc() if sort_order == "desc" else column.asc()
    total = db.execute(select(func.count(Batch.id)).where(*filters)).scalar_one()
    rows = (
        db.execute(select(Batch).where(*filters).order_by(order, Batch.id).offset((page - 1) * limit).limit(limit))
        .scalars()
        .all()
    )
    return {
        "batches": list(rows),
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "total": int(total),
    }


def expiring_batches(db: Session, days: int = EXPIRY_WINDOW_DAYS, today: date | None = None) -> list[Batch]:
    """Lots actifs, encore en stock, qui périment dans ]today, today + days]."""
    today = today or date.today()
    stmt = (
        select(Batch)
        .where(Batch.expiry_date > today)
        .where(Batch.expiry_date <= today + timedelta(days=days))
        .where(Batch.status == BatchStatus.active)
        .where(Batch.current_quantity > 0)
        .order_by(Batch.expiry_date, Batch.id)
    )
    return list(db.execute(stmt).scalars().all())


def expired_batches(db: Session, today: date | None = None) -> list[Batch]:
    today = today or date.today()
    stmt = (
        select(Batch)
        .where(Batch.expiry_date < today)
        .where(Batch.status.in_([BatchStatus.active, BatchStatus.expired]))
        .where(Batch.current_quantity > 0)
        .order_by(Batch.expiry_date, Batch.id)
    )
    return list(db.execute(stmt).scalars().all())


def find_by_code(db: Session, code_type: str, code: str) -> Batch:
    column = Batch.qr_code if code_type == "qr" else Batch.barcode
    batch = db.execute(select(Batch).where(column == code)).scalar_one_or_none()
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


def analytics(db: Session, today: date | None = None) -> dict:
    today = today or date.today()
    window = today + timedelta(days=EXPIRY_WINDOW_DAYS)

    status_rows = db.execute(select(Batch.status, func.count(Batch.id)).group_by(Batch.status)).all()

    expired, expiring, active = db.execute(
        select(
            func.sum(case((Batch.expiry_date < today, 1), else_=0)),
            func.sum(case(((Batch.expiry_date >= today) & (Batch.expiry_date <= window), 1), else_=0)),
            func.sum(case((Batch.expiry_date > window, 1), else_=0)),
        )
    ).one()

    total_value, total_quantity = db.execute(
        select(func.sum(Batch.current_quantity * Batch.unit_cost), func.sum(Batch.current_quantity))
    ).one()

    return {
        "status_distribution": {s.value: int(c) for s, c in status_rows},
        "expiry_analysis": {
            "expired": int(expired or 0),
            "expiring_30_days": int(expiring or 0),
            "active": int(active or 0),
        },
        "stock_value": {
            "total_value": round(float(total_value or 0), 2),
            "total_quantity": int(total_quantity or 0),
        },
    }


# ---------- écritures (endpoints /batches) ----------
def create_batch(
    db: Session,
    ctx: RequestContext,
    payload: BatchInput,
    update_product_stock: bool = False,
) -> Batch:
    """
    Enregistre un lot. Avec update_product_stock, la quantité initiale
    entre aussi en stock via le journal (mouvement "in" rattaché au lot).
    """
    errors = []
    batch_number = (payload.batch_number or "").strip()
    if not batch_number:
        errors.append({"field": "batch_number", "message": "batch number is required"})
    if payload.expiry_date is None:
        errors.append({"field": "expiry_date", "message": "expiry date is required"})
    if payload.initial_quantity is None or payload.initial_quantity < 0:
        errors.append({"field": "initial_quantity", "message": "must be >= 0"})
    if payload.unit_cost is not None and Decimal(payload.unit_cost) < 0:
        errors.append({"field": "unit_cost", "message": "must be >= 0"})
    if not db.get(Product, payload.product_id):
        errors.append({"field": "product_id", "message": f"Product {payload.product_id} not found"})
    if payload.supplier_id is not None and not db.get(Supplier, payload.supplier_id):
        errors.append({"field": "supplier_id", "message": f"Supplier {payload.supplier_id} not found"})
    if errors:
        raise ValidationError("Invalid batch", errors=errors)

    if find_batch(db, payload.product_id, batch_number):
        raise ConflictError("Batch already exists for this product")

    try:
        batch = Batch(
            batch_number=batch_number,
            product_id=payload.product_id,
            supplier_id=payload.supplier_id,
            manufacturing_date=payload.manufacturing_date,
            expiry_date=payload.expiry_date,
            initial_quantity=payload.initial_quantity,
            current_quantity=payload.initial_quantity,
            unit_cost=Decimal(payload.unit_cost or 0),
            barcode=payload.barcode,
            qr_code=payload.qr_code,
            notes=payload.notes,
            received_by=ctx.user_id,
            last_modified_by=ctx.user_id,
        )
        sync_status(batch)
        db.add(batch)
        db.flush()

        if update_product_stock and payload.initial_quantity > 0:
            record_movement(
                db,
                product=get_product_for_update(db, payload.product_id),
                movement_type=MovementType.stock_in,
                quantity=payload.initial_quantity,
                reason=f"New batch received: {batch.batch_number}",
                created_by=ctx.user_id,
                source=MovementSource.manual,
                batch_number=batch.batch_number,
                expiry_date=batch.expiry_date,
            )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # barcode / qr_code uniques
        raise ConflictError("Batch code already in use") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info(
        "batch.created",
        batch_id=batch.id,
        batch_number=batch.batch_number,
        product_id=batch.product_id,
        stock_updated=update_product_stock,
    )
    return batch


def update_batch(db: Session, ctx: RequestContext, batch_id: int, changes: dict) -> Batch:
    batch = get_batch_for_update(db, batch_id)

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            "Some batch fields cannot be updated",
            errors=[{"field": name, "message": "not updatable"} for name in sorted(unknown)],
        )
    if "supplier_id" in changes and changes["supplier_id"] is not None and not db.get(Supplier, changes["supplier_id"]):
        raise ValidationError(
            "Invalid supplier_id",
            errors=[{"field": "supplier_id", "message": f"Supplier {changes['supplier_id']} not found"}],
        )
    for name in ("expiry_date", "unit_cost"):
        if name in changes and changes[name] is None:
            del changes[name]
    # seul recalled (ou sa levée) se pose à la main
    target = changes.pop("status", None)
    if target is not None and target not in (BatchStatus.recalled, BatchStatus.active):
        raise ValidationError(
            f"Batch status {target.value} is computed, not set",
            errors=[{"field": "status", "message": "only recalled or active can be set"}],
        )

    try:
        for name, value in changes.items():
            setattr(batch, name, value)
        if target is not None:
            batch.status = target
        if batch.status != BatchStatus.recalled:
            sync_status(batch)
        batch.last_modified_by = ctx.user_id
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Batch code already in use") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info("batch.updated", batch_id=batch.id, status=batch.status.value, by=ctx.user_id)
    return batch


def adjust_batch_quantity(
    db: Session,
    ctx: RequestContext,
    batch_id: int,
    adjustment: int,
    reason: str | None = None,
) -> Batch:
    """Correction signée d'un lot : le lot et le journal bougent ensemble."""
    if not adjustment:
        raise ValidationError(
            "Adjustment must be non-zero",
            errors=[{"field": "adjustment", "message": "must be non-zero"}],
        )

    try:
        batch = get_batch_for_update(db, batch_id)
        if batch.current_quantity + adjustment < 0:
            raise ValidationError(
                f"Insufficient quantity in batch {batch.batch_number}. "
                f"Available: {batch.current_quantity}, Requested: {-adjustment}",
                errors=[{"field": "adjustment", "message": f"exceeds batch quantity ({batch.current_quantity})"}],
            )

        record_movement(
            db,
            product=get_product_for_update(db, batch.product_id),
            movement_type=MovementType.stock_in if adjustment > 0 else MovementType.stock_out,
            quantity=abs(adjustment),
            reason=reason or f"Batch adjustment: {batch.batch_number}",
            created_by=ctx.user_id,
            source=MovementSource.manual,
            batch_number=batch.batch_number,
            expiry_date=batch.expiry_date,
        )
        batch.current_quantity += adjustment
        sync_status(batch)
        batch.last_modified_by = ctx.user_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info("batch.adjusted", batch_id=batch.id, adjustment=adjustment, current=batch.current_quantity)
    return batch


def mark_expired(db: Session, today: date | None = None) -> int:
    """Passe en expired les lots actifs dont la date est dépassée. Ne commit pas."""
    today = today or date.today()
    lots = (
        db.execute(
            _locked(select(Batch).where(Batch.status == BatchStatus.active).where(Batch.expiry_date < today))
        )
        .scalars()
        .all()
    )
    for lot in lots:
        lot.status = BatchStatus.expired
    db.flush()
    return len(lots)


# ---------- tenue de lot (receipts / distributions) ----------
def lot_conflicts(db: Session, lines: list[tuple[str, int, str, date]]) -> list[dict]:
    """
    lines : (préfixe de champ, product_id, batch_number, expiry_date).

    Un même lot ne peut pas changer de date de péremption,
    ni recevoir de marchandise s'il est rappelé.
    """
    errors = []
    seen: dict[tuple[int, str], date] = {}
    for prefix, product_id, batch_number, expiry_date in lines:
        key = (product_id, batch_number.strip())
        expected = seen.setdefault(key, expiry_date)
        existing = find_batch(db, product_id, batch_number)
        if existing is not None:
            expected = existing.expiry_date
            if existing.status == BatchStatus.recalled:
                errors.append({"field": f"{prefix}.batch_number", "message": f"batch {key[1]} has been recalled"})
                continue
        if expiry_date != expected:
            errors.append(
                {
                    "field": f"{prefix}.expiry_date",
                    "message": f"batch {key[1]} is registered with expiry {expected.isoformat()}",
                }
            )
    return errors


def receive_into_batch(
    db: Session,
    ctx: RequestContext,
    *,
    product_id: int,
    batch_number: str,
    expiry_date: date,
    quantity: int,
    unit_cost: Decimal,
    supplier_id: int | None = None,
    purchase_receipt_id: int | None = None,
) -> Batch:
    batch = find_batch(db, product_id, batch_number, for_update=True)
    if batch is None:
        batch = Batch(
            batch_number=batch_number.strip(),
            product_id=product_id,
            supplier_id=supplier_id,
            expiry_date=expiry_date,
            initial_quantity=quantity,
            current_quantity=quantity,
            unit_cost=unit_cost,
            purchase_receipt_id=purchase_receipt_id,
            received_by=ctx.user_id,
            last_modified_by=ctx.user_id,
        )
        db.add(batch)
    else:
        batch.initial_quantity += quantity
        batch.current_quantity += quantity
        batch.last_modified_by = ctx.user_id
    sync_status(batch)
    db.flush()
    return batch


def draw_down(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    batch_number: str | None = None,
    today: date | None = None,
) -> list[DistributionAllocation]:
    """
    Prélève `quantity` sur les lots du produit.

    - lot imposé : il doit être disponible et suffisant, sinon ValidationError
    - sinon FEFO sur les lots disponibles ; le reliquat vient du stock hors lot
    Retourne les allocations (non rattachées), une par lot touché.
    """
    today = today or date.today()

    if batch_number:
        batch = find_batch(db, product_id, batch_number, for_update=True)
        if batch is None or not is_available(batch, today) or batch.current_quantity < quantity:
            available = batch.current_quantity if batch is not None and is_available(batch, today) else 0
            raise ValidationError(
                f"Batch {batch_number} cannot supply {quantity} units. Available: {available}",
                errors=[{"field": "batch_number", "message": f"available in batch: {available}"}],
            )
        candidates = [batch]
    else:
        candidates = (
            db.execute(
                _locked(
                    select(Batch)
                    .where(Batch.product_id == product_id)
                    .where(Batch.status == BatchStatus.active)
                    .where(Batch.expiry_date >= today)
                    .where(Batch.current_quantity > 0)
                    .order_by(Batch.expiry_date, Batch.id)
                )
            )
            .scalars()
            .all()
        )

    allocations = []
    remaining = quantity
    for batch in candidates:
        if remaining == 0:
            break
        take = min(batch.current_quantity, remaining)
        batch.current_quantity -= take
        sync_status(batch, today)
        allocations.append(DistributionAllocation(batch_id=batch.id, quantity=take))
        remaining -= take

    db.flush()
    return allocations


def put_back(db: Session, allocations: list[DistributionAllocation]) -> None:
    """Remet dans leurs lots les quantités prélevées par une distribution."""
    for alloc in allocations:
        batch = get_batch_for_update(db, alloc.batch_id)
        batch.current_quantity += alloc.quantity
        sync_status(batch)
    db.flush()


def requested_per_batch(lines: list[tuple[int, str | None, int]]) -> dict[tuple[int, str], int]:
    """Cumul (product_id, batch_number) -> quantité, lignes sans lot ignorées."""
    totals: dict[tuple[int, str], int] = defaultdict(int)
    for product_id, batch_number, quantity in lines:
        if batch_number and quantity and quantity > 0:
            totals[(product_id, batch_number.strip())] += quantity
    return totals
