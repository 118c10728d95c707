from __future__ import annotations

import os

import structlog
from sqlalchemy import select

from apothecary.app.core.logging import configure_logging
from apothecary.app.core.security import hash_password
from apothecary.app.db.models.core_types import Role
from apothecary.app.db.models.models_v1 import User
from apothecary.app.db.session import SessionLocal

logger = structlog.get_logger(__name__)


def run_seed():
    email = os.getenv("SEED_ADMIN_EMAIL", "admin@apothecary.local")
    password = os.getenv("SEED_ADMIN_PASSWORD", "admin123")

    db = SessionLocal()
    try:
        # Admin initial : sans lui, personne ne peut approuver un PO
        user = db.scalar(select(User).where(User.email == email))
        if not user:
            user = User(
                name="Admin",
                email=email,
                password_hash=hash_password(password),
                role=Role.admin,
            )
            db.add(user)
            db.commit()

        logger.info("seed.done", admin_email=email)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    run_seed()
