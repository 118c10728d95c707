from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from apothecary.app.db.models.core_types import Role


class UserRead(BaseModel):
    # jamais de password_hash en sortie
    id: int
    name: str
    email: str
    role: Role
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
