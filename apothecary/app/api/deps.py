from __future__ import annotations

from typing import Generator

from fastapi import Depends, Header

from apothecary.app.core.security import RequestContext, decode_access_token
from apothecary.app.db.session import SessionLocal
from apothecary.services.errors import AuthenticationError, PermissionDeniedError


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_request_context(authorization: str | None = Header(default=None)) -> RequestContext:
    if not authorization:
        raise AuthenticationError("No token, authorization denied")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("No token, authorization denied")
    return decode_access_token(token.strip())


def require_staff(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    # admin et staff : tout utilisateur authentifié avec un rôle connu
    return ctx


def require_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_admin:
        raise PermissionDeniedError("Access denied. Admin privileges required.")
    return ctx
