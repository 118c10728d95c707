from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from apothecary.app.core.config import JWT_ALGORITHM, JWT_EXPIRES_MINUTES, JWT_SECRET
from apothecary.app.db.models.core_types import Role
from apothecary.services.errors import AuthenticationError


@dataclass(frozen=True)
class RequestContext:
    """
    Identité de l'appelant, passée explicitement à chaque service.
    Aucun état global (ni token en mémoire module, ni header par défaut).
    """

    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def create_access_token(user_id: int, role: Role, expires_minutes: int = JWT_EXPIRES_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": Role(role).value,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> RequestContext:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Token is not valid") from e

    sub = payload.get("sub")
    role = payload.get("role")
    if sub is None or role is None:
        raise AuthenticationError("Token is not valid")

    try:
        return RequestContext(user_id=int(sub), role=Role(role))
    except ValueError as e:
        raise AuthenticationError("Token is not valid") from e
