from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import NotificationType, Severity


class NotificationRead(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    severity: Severity
    product_id: int | None = None
    batch_id: int | None = None
    target_user_id: int | None = None
    is_read: bool
    action_required: bool
    expires_at: date | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
