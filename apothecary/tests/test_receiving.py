from datetime import date, timedelta

import pytest
from sqlalchemy import select

from apothecary.app.db.models.core_types import MovementSource, MovementType, POStatus, ReceiptStatus
from apothecary.app.db.models.models_v1 import (
    Product,
    PurchaseOrder,
    PurchaseReceipt,
    StockMovement,
)
from apothecary.services import procurement, receiving
from apothecary.services.errors import NotFoundError, ValidationError


def _line(product, qty, expiry, batch="LOT-A"):
    return receiving.ReceiptItemInput(
        product_id=product.id,
        received_quantity=qty,
        batch_number=batch,
        expiry_date=expiry,
    )


def _receive(db_session, ctx, po, lines, key=None):
    return receiving.create_purchase_receipt(
        db_session,
        ctx,
        receiving.ReceiptInput(purchase_order_id=po.id, items=lines),
        idempotency_key=key,
    )


def test_partial_receipt(db_session, staff_ctx, shipped_po, expiry):
    """
    GIVEN
    - PO shipped : A=10, B=5
    - réception A=10, B=3

    THEN
    - PO partially_received, B.received_quantity == 3
    - stock A=10, B=3 ; un mouvement "in" par ligne, source receipt
    """
    po, (a, b) = shipped_po((10, 5))

    # ---------- ACT ----------
    receipt = _receive(db_session, staff_ctx, po, [_line(a, 10, expiry), _line(b, 3, expiry)])

    # ---------- ASSERT ----------
    db_session.expire_all()
    po = db_session.get(PurchaseOrder, po.id)
    assert po.status == POStatus.partially_received
    assert [it.received_quantity for it in po.items] == [10, 3]
    assert receipt.status == ReceiptStatus.partial
    assert receipt.receipt_number.startswith("GRN-")

    assert db_session.get(Product, a.id).stock_quantity == 10
    assert db_session.get(Product, b.id).stock_quantity == 3

    movements = db_session.execute(select(StockMovement).order_by(StockMovement.id)).scalars().all()
    assert [(m.product_id, m.movement_type, m.quantity) for m in movements] == [
        (a.id, MovementType.stock_in, 10),
        (b.id, MovementType.stock_in, 3),
    ]
    assert all(m.source == MovementSource.receipt for m in movements)
    assert all(m.purchase_receipt_id == receipt.id for m in movements)
    assert all(m.batch_number == "LOT-A" for m in movements)


def test_receiving_exact_remaining_completes_po(db_session, staff_ctx, shipped_po, expiry):
    po, (a, b) = shipped_po((10, 5))
    _receive(db_session, staff_ctx, po, [_line(a, 10, expiry), _line(b, 3, expiry)])

    receipt = _receive(db_session, staff_ctx, po, [_line(b, 2, expiry, batch="LOT-B")])

    db_session.expire_all()
    po = db_session.get(PurchaseOrder, po.id)
    assert po.status == POStatus.received
    assert po.actual_delivery_date is not None
    assert receipt.status == ReceiptStatus.complete
    assert db_session.get(Product, b.id).stock_quantity == 5


def test_over_receipt_is_rejected_and_nothing_written(db_session, staff_ctx, shipped_po, expiry):
    po, (a, b) = shipped_po((10, 5))
    _receive(db_session, staff_ctx, po, [_line(b, 3, expiry)])

    with pytest.raises(ValidationError) as exc:
        _receive(db_session, staff_ctx, po, [_line(a, 1, expiry), _line(b, 3, expiry)])

    assert exc.value.errors[0]["field"] == "items[1].received_quantity"
    db_session.expire_all()
    assert [it.received_quantity for it in db_session.get(PurchaseOrder, po.id).items] == [0, 3]
    assert db_session.get(Product, a.id).stock_quantity == 0
    assert db_session.query(PurchaseReceipt).count() == 1


def test_same_product_twice_counts_cumulatively(db_session, staff_ctx, shipped_po, expiry):
    po, (a,) = shipped_po((10,))

    with pytest.raises(ValidationError):
        _receive(db_session, staff_ctx, po, [_line(a, 6, expiry), _line(a, 6, expiry, batch="LOT-B")])

    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 0


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"received_quantity": 0}, "items[1].received_quantity"),
        ({"batch_number": "  "}, "items[1].batch_number"),
        ({"batch_number": None}, "items[1].batch_number"),
        ({"expiry_date": None}, "items[1].expiry_date"),
    ],
)
def test_invalid_line_blocks_whole_receipt(db_session, staff_ctx, shipped_po, expiry, overrides, field):
    """
    Une seule ligne invalide => aucune écriture (receipt, stock, PO).
    """
    po, (a, b) = shipped_po((10, 5))
    bad = _line(b, 2, expiry)
    for key, value in overrides.items():
        setattr(bad, key, value)

    with pytest.raises(ValidationError) as exc:
        _receive(db_session, staff_ctx, po, [_line(a, 4, expiry), bad])

    assert field in [e["field"] for e in exc.value.errors]
    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 0
    assert db_session.get(PurchaseOrder, po.id).status == POStatus.shipped
    assert db_session.query(PurchaseReceipt).count() == 0
    assert db_session.query(StockMovement).count() == 0


def test_item_not_in_po_is_rejected(db_session, staff_ctx, shipped_po, make_product, expiry):
    po, _ = shipped_po((10,))
    stranger = make_product(name="Not ordered")

    with pytest.raises(ValidationError) as exc:
        _receive(db_session, staff_ctx, po, [_line(stranger, 1, expiry)])

    assert "not found in purchase order" in exc.value.errors[0]["message"]


@pytest.mark.parametrize("status_path", [[], [POStatus.submitted], [POStatus.submitted, POStatus.approved]])
def test_po_must_be_shipped_or_partially_received(
    db_session, staff_ctx, admin_ctx, supplier, make_product, expiry, status_path
):
    product = make_product()
    po = procurement.create_purchase_order(
        db_session,
        staff_ctx,
        procurement.POInput(
            supplier_id=supplier.id,
            items=[procurement.POItemInput(generic_name="x", quantity=3, unit_price=1, product_id=product.id)],
        ),
    )
    for step in status_path:
        procurement.transition_purchase_order(db_session, admin_ctx, po.id, step)

    with pytest.raises(ValidationError):
        _receive(db_session, staff_ctx, po, [_line(product, 1, expiry)])


def test_unknown_po_is_not_found(db_session, staff_ctx):
    with pytest.raises(NotFoundError):
        receiving.create_purchase_receipt(
            db_session,
            staff_ctx,
            receiving.ReceiptInput(purchase_order_id=4242, items=[]),
        )


def test_fully_received_po_accepts_no_more_receipts(db_session, staff_ctx, shipped_po, expiry):
    po, (a,) = shipped_po((2,))
    _receive(db_session, staff_ctx, po, [_line(a, 2, expiry)])

    with pytest.raises(ValidationError):
        _receive(db_session, staff_ctx, po, [_line(a, 1, expiry)])


def test_idempotency_key_replays_same_receipt(db_session, staff_ctx, shipped_po, expiry):
    po, (a,) = shipped_po((10,))

    first = _receive(db_session, staff_ctx, po, [_line(a, 4, expiry)], key="grn-abc")
    second = _receive(db_session, staff_ctx, po, [_line(a, 4, expiry)], key="grn-abc")

    assert second.id == first.id
    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 4
    assert db_session.query(StockMovement).count() == 1


def test_external_product_line_updates_po_but_not_stock(db_session, staff_ctx, admin_ctx, supplier, expiry):
    po = procurement.create_purchase_order(
        db_session,
        staff_ctx,
        procurement.POInput(
            supplier_id=supplier.id,
            items=[procurement.POItemInput(generic_name="Amoxicillin", quantity=5, unit_price=1, external_product_id=77)],
        ),
    )
    for step in (POStatus.submitted, POStatus.approved, POStatus.shipped):
        procurement.transition_purchase_order(db_session, admin_ctx, po.id, step)

    receiving.create_purchase_receipt(
        db_session,
        staff_ctx,
        receiving.ReceiptInput(
            purchase_order_id=po.id,
            items=[
                receiving.ReceiptItemInput(
                    external_product_id=77,
                    received_quantity=5,
                    batch_number="EXT-1",
                    expiry_date=date.today() + timedelta(days=200),
                )
            ],
        ),
    )

    db_session.expire_all()
    po = db_session.get(PurchaseOrder, po.id)
    assert po.status == POStatus.received
    assert po.items[0].received_quantity == 5
    assert db_session.query(StockMovement).count() == 0
