import os

# avant tout import de apothecary.app.db.session
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from apothecary.app.api.deps import get_db  # noqa: E402
from apothecary.app.core.security import RequestContext, create_access_token, hash_password  # noqa: E402
from apothecary.app.db.base import Base  # noqa: E402
from apothecary.app.db.models.core_types import POStatus, Role  # noqa: E402
from apothecary.app.db.models.models_v1 import Product, Supplier, User  # noqa: E402
from apothecary.app.main import app  # noqa: E402
from apothecary.services import procurement  # noqa: E402


@pytest.fixture(scope="function")
def session_factory():
    """
    Base SQLite en mémoire, neuve pour chaque test.

    StaticPool : une seule connexion partagée, sinon chaque session
    verrait sa propre base vide.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def admin_user(db_session) -> User:
    user = User(name="Admin", email="admin@test.local", password_hash=hash_password("admin123"), role=Role.admin)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def staff_user(db_session) -> User:
    user = User(name="Staff", email="staff@test.local", password_hash=hash_password("staff123"), role=Role.staff)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_ctx(admin_user) -> RequestContext:
    return RequestContext(user_id=admin_user.id, role=Role.admin)


@pytest.fixture
def staff_ctx(staff_user) -> RequestContext:
    return RequestContext(user_id=staff_user.id, role=Role.staff)


@pytest.fixture
def supplier(db_session) -> Supplier:
    s = Supplier(name="Generic Pharma Ltd", email="sales@generic.test", is_jan_aushadhi=True)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture
def make_product(db_session):
    """Produit à stock 0 ; le stock se pose ensuite via le journal."""
    counter = {"n": 0}

    def _make(name: str = "Paracetamol 500mg", reorder_level: int = 10, unit_price: str = "2.50", **kwargs) -> Product:
        counter["n"] += 1
        p = Product(
            sku=kwargs.pop("sku", f"SKU-{counter['n']:03d}"),
            name=name,
            reorder_level=reorder_level,
            unit_price=Decimal(unit_price),
            stock_quantity=0,
            **kwargs,
        )
        db_session.add(p)
        db_session.commit()
        return p

    return _make


@pytest.fixture
def shipped_po(db_session, supplier, make_product, staff_ctx, admin_ctx):
    """
    PO "shipped" de deux lignes :
    - produit A : 10 unités
    - produit B : 5 unités
    """

    def _make(quantities=(10, 5)):
        products = [make_product(name=f"Product {i}") for i in range(len(quantities))]
        payload = procurement.POInput(
            supplier_id=supplier.id,
            items=[
                procurement.POItemInput(
                    generic_name=p.name,
                    quantity=qty,
                    unit_price=Decimal("1.00"),
                    product_id=p.id,
                )
                for p, qty in zip(products, quantities)
            ],
        )
        po = procurement.create_purchase_order(db_session, staff_ctx, payload)
        procurement.transition_purchase_order(db_session, staff_ctx, po.id, POStatus.submitted)
        procurement.transition_purchase_order(db_session, admin_ctx, po.id, POStatus.approved)
        po = procurement.transition_purchase_order(db_session, staff_ctx, po.id, POStatus.shipped)
        return po, products

    return _make


@pytest.fixture
def expiry() -> date:
    return date.today() + timedelta(days=365)


# ---------- HTTP ----------
@pytest.fixture
def client(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(admin_user.id, Role.admin)}"}


@pytest.fixture
def staff_headers(staff_user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(staff_user.id, Role.staff)}"}
