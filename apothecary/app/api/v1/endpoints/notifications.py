from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, get_request_context, require_admin
from apothecary.app.core.security import RequestContext
from apothecary.app.db.models.core_types import NotificationType, Severity
from apothecary.app.schemas.notification import NotificationRead
from apothecary.services import notifications

router = APIRouter(prefix="/notifications")


@router.get("")
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    type: NotificationType | None = None,
    is_read: bool | None = None,
    severity: Severity | None = None,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    result = notifications.list_for_user(
        db,
        ctx.user_id,
        page=page,
        limit=limit,
        type=type,
        is_read=is_read,
        severity=severity,
    )
    result["notifications"] = [NotificationRead.model_validate(n) for n in result["notifications"]]
    return result


@router.get("/stats")
def notification_stats(ctx: RequestContext = Depends(get_request_context), db: Session = Depends(get_db)):
    return notifications.stats(db, ctx.user_id)


@router.patch("/{notification_id}/read", response_model=NotificationRead)
def mark_read(
    notification_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return notifications.mark_as_read(db, notification_id, ctx.user_id)


@router.post("/check")
def run_checks(_: RequestContext = Depends(require_admin), db: Session = Depends(get_db)):
    return notifications.run_all_checks(db)
