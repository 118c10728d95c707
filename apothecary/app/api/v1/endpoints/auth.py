from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from apothecary.app.api.deps import get_db, get_request_context
from apothecary.app.core.security import RequestContext, create_access_token
from apothecary.app.schemas.user import UserRead
from apothecary.services import auth as auth_service

router = APIRouter(prefix="/auth")


class RegisterIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=6)


class LoginIn(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


@router.post("/register", status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    user = auth_service.register_user(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
    )
    return {
        "token": create_access_token(user.id, user.role),
        "user": UserRead.model_validate(user),
    }


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    token, user = auth_service.login(db, email=payload.email, password=payload.password)
    return {"token": token, "user": UserRead.model_validate(user)}


@router.get("/me", response_model=UserRead)
def me(ctx: RequestContext = Depends(get_request_context), db: Session = Depends(get_db)):
    return auth_service.get_user(db, ctx.user_id)
