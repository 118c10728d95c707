from decimal import Decimal

import pytest

from apothecary.app.db.models.core_types import MovementType
from apothecary.app.db.models.models_v1 import StockMovement
from apothecary.services import catalog, inventory, procurement
from apothecary.services.errors import ConflictError


def test_opening_stock_goes_through_ledger(db_session, staff_ctx):
    product = catalog.create_product(
        db_session,
        staff_ctx,
        catalog.ProductInput(sku="PCM-500", name="Paracetamol 500mg", unit_price=Decimal("1.20"), reorder_level=5),
        initial_stock=40,
    )

    assert product.stock_quantity == 40
    movement = db_session.query(StockMovement).one()
    assert (movement.movement_type, movement.quantity, movement.previous_stock, movement.new_stock) == (
        MovementType.stock_in,
        40,
        0,
        40,
    )


def test_duplicate_sku_is_a_conflict(db_session, staff_ctx):
    catalog.create_product(db_session, staff_ctx, catalog.ProductInput(sku="DUP", name="A"))
    with pytest.raises(ConflictError):
        catalog.create_product(db_session, staff_ctx, catalog.ProductInput(sku="DUP", name="B"))


def test_update_never_touches_stock(db_session, staff_ctx, make_product):
    p = make_product()
    inventory.adjust_stock(db_session, staff_ctx, product_id=p.id, adjustment=8)

    updated = catalog.update_product(db_session, p.id, {"name": "Renamed", "stock_quantity": 999})

    assert updated.name == "Renamed"
    assert updated.stock_quantity == 8


def test_low_stock_filter(db_session, make_product):
    make_product(name="Empty", reorder_level=5)
    make_product(name="Untracked", reorder_level=0, sku="ZERO")

    names = [p.name for p in catalog.list_products(db_session, low_stock_only=True)]
    # stock 0 <= reorder_level 0 : aussi en alerte
    assert names == ["Empty", "Untracked"]


def test_product_with_movements_cannot_be_deleted(db_session, staff_ctx, make_product):
    p = make_product()
    inventory.adjust_stock(db_session, staff_ctx, product_id=p.id, adjustment=1)

    with pytest.raises(ConflictError):
        catalog.delete_product(db_session, p.id)


def test_supplier_email_is_normalised_and_delete_guarded(db_session, staff_ctx, make_product):
    s = catalog.create_supplier(db_session, catalog.SupplierInput(name="Acme", email="  Sales@ACME.test "))
    assert s.email == "sales@acme.test"

    product = make_product()
    procurement.create_purchase_order(
        db_session,
        staff_ctx,
        procurement.POInput(
            supplier_id=s.id,
            items=[procurement.POItemInput(generic_name="x", quantity=1, unit_price=Decimal("1"), product_id=product.id)],
        ),
    )
    with pytest.raises(ConflictError):
        catalog.delete_supplier(db_session, s.id)


def test_supplier_filter_by_jan_aushadhi(db_session):
    catalog.create_supplier(db_session, catalog.SupplierInput(name="Govt Store", is_jan_aushadhi=True))
    catalog.create_supplier(db_session, catalog.SupplierInput(name="Private Co"))

    assert [s.name for s in catalog.list_suppliers(db_session, is_jan_aushadhi=True)] == ["Govt Store"]
    assert len(catalog.list_suppliers(db_session)) == 2
