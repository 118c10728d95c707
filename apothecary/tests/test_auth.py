from datetime import datetime, timedelta, timezone

import jwt
import pytest

from apothecary.app.core.config import JWT_ALGORITHM, JWT_SECRET
from apothecary.app.core.security import create_access_token, decode_access_token
from apothecary.app.db.models.core_types import Role
from apothecary.services import auth
from apothecary.services.errors import AuthenticationError, ConflictError, ValidationError


def test_register_then_login(db_session):
    user = auth.register_user(db_session, name="Asha", email="Asha@Clinic.test", password="secret1")

    assert user.email == "asha@clinic.test"
    assert user.role == Role.staff
    assert user.password_hash != "secret1"

    token, logged = auth.login(db_session, email="asha@clinic.test", password="secret1")
    assert logged.id == user.id
    ctx = decode_access_token(token)
    assert (ctx.user_id, ctx.role) == (user.id, Role.staff)


def test_register_rules(db_session):
    auth.register_user(db_session, name="A", email="a@x.test", password="secret1")

    with pytest.raises(ConflictError):
        auth.register_user(db_session, name="B", email="A@X.test", password="secret2")
    with pytest.raises(ValidationError):
        auth.register_user(db_session, name="C", email="c@x.test", password="123")


@pytest.mark.parametrize("email, password", [("a@x.test", "wrong-pass"), ("nobody@x.test", "secret1")])
def test_login_failures_share_one_message(db_session, email, password):
    auth.register_user(db_session, name="A", email="a@x.test", password="secret1")

    with pytest.raises(AuthenticationError) as exc:
        auth.login(db_session, email=email, password=password)
    assert exc.value.message == "Invalid email or password."


def test_expired_and_forged_tokens_are_rejected():
    expired = create_access_token(1, Role.admin, expires_minutes=-1)
    with pytest.raises(AuthenticationError):
        decode_access_token(expired)

    forged = jwt.encode(
        {"sub": "1", "role": "admin", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        "not-the-secret",
        algorithm=JWT_ALGORITHM,
    )
    with pytest.raises(AuthenticationError):
        decode_access_token(forged)

    unknown_role = jwt.encode(
        {"sub": "1", "role": "root", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )
    with pytest.raises(AuthenticationError):
        decode_access_token(unknown_role)
