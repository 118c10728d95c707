from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from apothecary.app.core.security import create_access_token, hash_password, verify_password
from apothecary.app.db.models.core_types import Role
from apothecary.app.db.models.models_v1 import User
from apothecary.services.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


def register_user(db: Session, *, name: str, email: str, password: str) -> User:
    """
    Inscription publique : toujours un compte staff.
    Les admins viennent du seed (apothecary.app.db.seed).
    """
    email = email.strip().lower()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Password too short",
            errors=[{"field": "password", "message": f"must be at least {MIN_PASSWORD_LENGTH} characters"}],
        )

    exists = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if exists:
        raise ConflictError("User already exists")

    user = User(name=name.strip(), email=email, password_hash=hash_password(password), role=Role.staff)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("auth.registered", user_id=user.id, role=user.role.value)
    return user


def login(db: Session, *, email: str, password: str) -> tuple[str, User]:
    user = db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
    # même message dans les deux cas : on ne révèle pas l'existence du compte
    if not user or not verify_password(password, user.password_hash):
        logger.warning("auth.login_failed", email=email)
        raise AuthenticationError("Invalid email or password.")

    token = create_access_token(user.id, user.role)
    logger.info("auth.login", user_id=user.id)
    return token, user


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user
