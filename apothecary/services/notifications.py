"""
Notifications : alertes stock bas et péremption.

Une alerte non lue du même type pour le même produit (stock bas) ou le
même lot (péremption) n'est jamais dupliquée ; les checks peuvent donc
tourner aussi souvent que voulu (idempotents).
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from apothecary.app.db.models.core_types import NotificationType, Severity
from apothecary.app.db.models.models_v1 import Notification, NotificationRead, Product
from apothecary.services import batches
from apothecary.services.errors import NotFoundError

logger = structlog.get_logger(__name__)

EXPIRY_WARNING_DAYS = batches.EXPIRY_WINDOW_DAYS
EXPIRY_CRITICAL_DAYS = 7


def create_notification(
    db: Session,
    *,
    type: NotificationType,
    title: str,
    message: str,
    severity: Severity = Severity.medium,
    product_id: int | None = None,
    batch_id: int | None = None,
    target_user_id: int | None = None,
    action_required: bool = False,
    expires_at: date | None = None,
) -> Notification:
    n = Notification(
        type=type,
        title=title,
        message=message,
        severity=severity,
        product_id=product_id,
        batch_id=batch_id,
        target_user_id=target_user_id,
        action_required=action_required,
        expires_at=expires_at,
    )
    db.add(n)
    db.flush()
    return n


def _has_unread(
    db: Session,
    type: NotificationType,
    *,
    product_id: int | None = None,
    batch_id: int | None = None,
) -> bool:
    stmt = select(Notification.id).where(Notification.type == type).where(Notification.is_read.is_(False))
    if product_id is not None:
        stmt = stmt.where(Notification.product_id == product_id)
    if batch_id is not None:
        stmt = stmt.where(Notification.batch_id == batch_id)
    return db.execute(stmt.limit(1)).first() is not None


def check_low_stock(db: Session) -> dict:
    products = (
        db.execute(
            select(Product).where(Product.stock_quantity <= Product.reorder_level).order_by(Product.id)
        )
        .scalars()
        .all()
    )

    created = 0
    for p in products:
        if _has_unread(db, NotificationType.low_stock, product_id=p.id):
            continue
        create_notification(
            db,
            type=NotificationType.low_stock,
            title="Low Stock Alert",
            message=(
                f"{p.name} is running low. Current stock: {p.stock_quantity}, "
                f"Reorder level: {p.reorder_level}"
            ),
            severity=Severity.medium,
            product_id=p.id,
            action_required=True,
        )
        created += 1

    return {"low_stock_products": len(products), "low_stock_created": created}


def check_expiry(db: Session, today: date | None = None) -> dict:
    """
    Alertes par lot (voir services.batches) :
    - lots dont la date est passée : statut expired
    - péremption <= 30 jours : expiry_warning (medium)
    - péremption <= 7 jours  : expiry_critical (critical)
    Seuls les lots actifs encore en stock sont concernés. Ne commit pas.
    """
    today = today or date.today()
    critical_limit = today + timedelta(days=EXPIRY_CRITICAL_DAYS)

    expired = batches.mark_expired(db, today=today)
    expiring = batches.expiring_batches(db, days=EXPIRY_WARNING_DAYS, today=today)

    warnings = criticals = 0
    for lot in expiring:
        days_left = (lot.expiry_date - today).days
        name = lot.product.name

        if not _has_unread(db, NotificationType.expiry_warning, batch_id=lot.id):
            create_notification(
                db,
                type=NotificationType.expiry_warning,
                title="Product Expiring Soon",
                message=(
                    f"Batch {lot.batch_number} of {name} expires in {days_left} days "
                    f"({lot.expiry_date.isoformat()}). Current stock: {lot.current_quantity} units."
                ),
                severity=Severity.medium,
                product_id=lot.product_id,
                batch_id=lot.id,
                action_required=True,
                expires_at=lot.expiry_date,
            )
            warnings += 1

        if lot.expiry_date <= critical_limit and not _has_unread(db, NotificationType.expiry_critical, batch_id=lot.id):
            create_notification(
                db,
                type=NotificationType.expiry_critical,
                title="URGENT: Product Expiring Very Soon",
                message=(
                    f"CRITICAL: Batch {lot.batch_number} of {name} expires in {days_left} days! "
                    f"Immediate action required. Current stock: {lot.current_quantity} units."
                ),
                severity=Severity.critical,
                product_id=lot.product_id,
                batch_id=lot.id,
                action_required=True,
                expires_at=lot.expiry_date,
            )
            criticals += 1

    return {
        "expiring_batches": len(expiring),
        "expired_batches": expired,
        "warning_created": warnings,
        "critical_created": criticals,
    }


def run_all_checks(db: Session, today: date | None = None) -> dict:
    try:
        result = {**check_expiry(db, today=today), **check_low_stock(db)}
        db.commit()
    except Exception:
        db.rollback()
        raise

    result["timestamp"] = datetime.utcnow()
    logger.info("notifications.checked", **{k: v for k, v in result.items() if k != "timestamp"})
    return result


def _visible_to(user_id: int):
    # ciblée sur l'utilisateur, ou globale
    return or_(Notification.target_user_id == user_id, Notification.target_user_id.is_(None))


def list_for_user(
    db: Session,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    type: NotificationType | None = None,
    is_read: bool | None = None,
    severity: Severity | None = None,
) -> dict:
    page = max(page, 1)
    limit = max(limit, 1)

    filters = [_visible_to(user_id)]
    if type is not None:
        filters.append(Notification.type == type)
    if is_read is not None:
        filters.append(Notification.is_read.is_(is_read))
    if severity is not None:
        filters.append(Notification.severity == severity)

    total = db.execute(select(func.count(Notification.id)).where(*filters)).scalar_one()
    rows = (
        db.execute(
            select(Notification)
            .where(*filters)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return {
        "notifications": list(rows),
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "total": int(total),
    }


def mark_as_read(db: Session, notification_id: int, user_id: int) -> Notification:
    n = db.get(Notification, notification_id)
    if not n or (n.target_user_id is not None and n.target_user_id != user_id):
        raise NotFoundError("Notification not found")

    already = db.get(NotificationRead, (notification_id, user_id))
    if not already:
        db.add(NotificationRead(notification_id=notification_id, user_id=user_id))
        n.is_read = True
        db.commit()
        db.refresh(n)
    return n


def stats(db: Session, user_id: int | None = None) -> dict:
    filters = [_visible_to(user_id)] if user_id is not None else []

    def _count(*extra) -> int:
        return int(db.execute(select(func.count(Notification.id)).where(*filters, *extra)).scalar_one())

    return {
        "total": _count(),
        "unread": _count(Notification.is_read.is_(False)),
        "action_required": _count(Notification.action_required.is_(True)),
        "critical": _count(Notification.severity == Severity.critical),
        "high": _count(Notification.severity == Severity.high),
    }
