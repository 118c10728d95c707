from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from apothecary.app.db.models.core_types import BatchStatus, DistributionStatus, MovementType, RecipientType
from apothecary.app.db.models.models_v1 import (
    Batch,
    Distribution,
    DistributionAllocation,
    DistributionItem,
    Product,
    StockMovement,
)
from apothecary.services import batches, distribution, inventory, receiving
from apothecary.services.errors import ConflictError, NotFoundError, ValidationError


def _lot(db_session, ctx, product, number, days, qty, **kwargs):
    """Lot créé à la main ; sa quantité entre en stock via le journal."""
    return batches.create_batch(
        db_session,
        ctx,
        batches.BatchInput(
            product_id=product.id,
            batch_number=number,
            expiry_date=date.today() + timedelta(days=days),
            initial_quantity=qty,
            **kwargs,
        ),
        update_product_stock=qty > 0,
    )


def _line(product, qty, expiry, batch="LOT-A"):
    return receiving.ReceiptItemInput(product_id=product.id, received_quantity=qty, batch_number=batch, expiry_date=expiry)


def _receive(db_session, ctx, po, lines):
    return receiving.create_purchase_receipt(db_session, ctx, receiving.ReceiptInput(purchase_order_id=po.id, items=lines))


def _distribute(db_session, ctx, lines):
    return distribution.create_distribution(
        db_session,
        ctx,
        distribution.DistributionInput(
            recipient="Ward 3",
            recipient_type=RecipientType.department,
            items=[
                distribution.DistributionItemInput(product_id=p.id, quantity=q, batch_number=lot)
                for p, q, lot in lines
            ],
        ),
    )


def _allocations(db_session, dist_id):
    rows = db_session.execute(
        select(DistributionAllocation)
        .join(DistributionItem, DistributionItem.id == DistributionAllocation.distribution_item_id)
        .where(DistributionItem.distribution_id == dist_id)
        .order_by(DistributionAllocation.id)
    ).scalars()
    return [(a.batch_id, a.quantity) for a in rows]


# ---------- réception ----------
def test_receipt_creates_batch(db_session, staff_ctx, shipped_po, expiry):
    po, (a, b) = shipped_po((10, 5))

    receipt = _receive(db_session, staff_ctx, po, [_line(a, 10, expiry), _line(b, 3, expiry, batch="LOT-B")])

    db_session.expire_all()
    lot = batches.find_batch(db_session, a.id, "LOT-A")
    assert (lot.initial_quantity, lot.current_quantity) == (10, 10)
    assert lot.status == BatchStatus.active
    assert lot.expiry_date == expiry
    assert lot.supplier_id == po.supplier_id
    assert lot.purchase_receipt_id == receipt.id
    assert lot.unit_cost == Decimal("1.00")
    assert lot.received_by == staff_ctx.user_id
    assert batches.find_batch(db_session, b.id, "LOT-B").current_quantity == 3


def test_same_batch_accumulates_across_receipts(db_session, staff_ctx, shipped_po, expiry):
    po, (a,) = shipped_po((10,))

    _receive(db_session, staff_ctx, po, [_line(a, 4, expiry)])
    _receive(db_session, staff_ctx, po, [_line(a, 3, expiry)])

    db_session.expire_all()
    lots = db_session.execute(select(Batch)).scalars().all()
    assert [(lot.batch_number, lot.initial_quantity, lot.current_quantity) for lot in lots] == [("LOT-A", 7, 7)]


def test_batch_expiry_mismatch_blocks_receipt(db_session, staff_ctx, shipped_po, expiry):
    """
    GIVEN
    - LOT-A déjà reçu avec une péremption donnée

    THEN
    - un receipt qui annonce LOT-A avec une autre date est refusé en entier
    - ni stock, ni lot, ni PO ne bougent
    """
    po, (a,) = shipped_po((10,))
    _receive(db_session, staff_ctx, po, [_line(a, 4, expiry)])

    with pytest.raises(ValidationError) as exc:
        _receive(db_session, staff_ctx, po, [_line(a, 2, expiry + timedelta(days=1))])

    assert [e["field"] for e in exc.value.errors] == ["items[0].expiry_date"]
    db_session.expire_all()
    assert batches.find_batch(db_session, a.id, "LOT-A").current_quantity == 4
    assert db_session.get(Product, a.id).stock_quantity == 4
    assert [it.received_quantity for it in po.items] == [4]


def test_batch_expiry_mismatch_within_one_receipt(db_session, staff_ctx, shipped_po, expiry):
    po, (a,) = shipped_po((10,))

    with pytest.raises(ValidationError) as exc:
        _receive(db_session, staff_ctx, po, [_line(a, 3, expiry), _line(a, 3, expiry + timedelta(days=30))])

    assert [e["field"] for e in exc.value.errors] == ["items[1].expiry_date"]
    assert db_session.query(Batch).count() == 0


def test_recalled_batch_cannot_be_received(db_session, staff_ctx, shipped_po, expiry):
    po, (a,) = shipped_po((10,))
    _receive(db_session, staff_ctx, po, [_line(a, 4, expiry)])
    lot = batches.find_batch(db_session, a.id, "LOT-A")
    batches.update_batch(db_session, staff_ctx, lot.id, {"status": BatchStatus.recalled})

    with pytest.raises(ValidationError) as exc:
        _receive(db_session, staff_ctx, po, [_line(a, 1, expiry)])

    assert "recalled" in exc.value.errors[0]["message"]


# ---------- distribution ----------
def test_distribution_draws_earliest_expiry_first(db_session, staff_ctx, make_product):
    """
    GIVEN
    - LATE : 5 unités, péremption J+200
    - EARLY : 4 unités, péremption J+60

    THEN
    - une sortie de 6 prend EARLY=4 puis LATE=2
    - EARLY passe en depleted
    """
    a = make_product()
    late = _lot(db_session, staff_ctx, a, "LATE", 200, 5)
    early = _lot(db_session, staff_ctx, a, "EARLY", 60, 4)

    dist = _distribute(db_session, staff_ctx, [(a, 6, None)])

    assert _allocations(db_session, dist.id) == [(early.id, 4), (late.id, 2)]
    db_session.expire_all()
    assert db_session.get(Batch, early.id).status == BatchStatus.depleted
    assert db_session.get(Batch, late.id).current_quantity == 3
    assert db_session.get(Product, a.id).stock_quantity == 3


def test_distribution_skips_expired_batches(db_session, staff_ctx, make_product):
    a = make_product()
    old = _lot(db_session, staff_ctx, a, "OLD", -10, 5)
    new = _lot(db_session, staff_ctx, a, "NEW", 100, 3)
    assert old.status == BatchStatus.expired

    dist = _distribute(db_session, staff_ctx, [(a, 3, None)])

    assert _allocations(db_session, dist.id) == [(new.id, 3)]
    db_session.expire_all()
    assert db_session.get(Batch, old.id).current_quantity == 5


def test_untracked_stock_covers_remainder(db_session, staff_ctx, make_product):
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-1", 90, 2)
    inventory.create_manual_movement(
        db_session, staff_ctx, product_id=a.id, movement_type=MovementType.stock_in, quantity=8, reason="opening"
    )

    dist = _distribute(db_session, staff_ctx, [(a, 5, None)])

    assert _allocations(db_session, dist.id) == [(lot.id, 2)]
    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 5
    assert inventory.verify_ledger(db_session, a.id)["consistent"] is True


def test_explicit_batch_must_cover_quantity(db_session, staff_ctx, make_product):
    """
    GIVEN
    - LOT-A : 2 unités, plus 8 unités hors lot

    THEN
    - demander 3 unités de LOT-A est refusé, même si le produit a 10 en stock
    - 2 unités de LOT-A passent et reprennent la péremption du lot
    """
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-A", 90, 2)
    inventory.create_manual_movement(
        db_session, staff_ctx, product_id=a.id, movement_type=MovementType.stock_in, quantity=8, reason="opening"
    )

    with pytest.raises(ValidationError) as exc:
        _distribute(db_session, staff_ctx, [(a, 3, "LOT-A")])

    assert exc.value.errors[0]["field"] == "items[0].batch_number"
    assert db_session.query(Distribution).count() == 0
    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 10
    assert db_session.get(Batch, lot.id).current_quantity == 2

    dist = _distribute(db_session, staff_ctx, [(a, 2, "LOT-A")])

    assert _allocations(db_session, dist.id) == [(lot.id, 2)]
    assert dist.items[0].expiry_date == lot.expiry_date


def test_unknown_explicit_batch_is_rejected(db_session, staff_ctx, make_product):
    a = make_product()
    _lot(db_session, staff_ctx, a, "LOT-A", 90, 5)

    with pytest.raises(ValidationError) as exc:
        _distribute(db_session, staff_ctx, [(a, 1, "LOT-Z")])

    assert "Available: 0" in exc.value.errors[0]["message"]


@pytest.mark.parametrize("target", [DistributionStatus.returned, DistributionStatus.cancelled])
def test_return_or_cancel_puts_quantities_back_in_batches(db_session, staff_ctx, make_product, target):
    a = make_product()
    late = _lot(db_session, staff_ctx, a, "LATE", 200, 5)
    early = _lot(db_session, staff_ctx, a, "EARLY", 60, 4)
    dist = _distribute(db_session, staff_ctx, [(a, 6, None)])

    distribution.transition_distribution(db_session, staff_ctx, dist.id, target)

    db_session.expire_all()
    assert db_session.get(Batch, early.id).current_quantity == 4
    assert db_session.get(Batch, early.id).status == BatchStatus.active
    assert db_session.get(Batch, late.id).current_quantity == 5
    assert db_session.get(Product, a.id).stock_quantity == 9


def test_delete_pending_puts_quantities_back_in_batches(db_session, staff_ctx, make_product):
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-1", 60, 4)
    dist = _distribute(db_session, staff_ctx, [(a, 3, None)])

    distribution.delete_distribution(db_session, staff_ctx, dist.id)

    db_session.expire_all()
    assert db_session.get(Batch, lot.id).current_quantity == 4
    assert db_session.query(DistributionAllocation).count() == 0


# ---------- lectures ----------
def test_expiring_and_expired_lists(db_session, staff_ctx, make_product):
    """
    GIVEN
    - SOON (J+10), LATER (J+45), PAST (J-3), EMPTY (J+5, 0 unité), RECALLED (J+12)

    THEN
    - expiring (30 j) : SOON seulement
    - expired : PAST seulement
    """
    a = make_product()
    soon = _lot(db_session, staff_ctx, a, "SOON", 10, 5)
    _lot(db_session, staff_ctx, a, "LATER", 45, 5)
    past = _lot(db_session, staff_ctx, a, "PAST", -3, 2)
    _lot(db_session, staff_ctx, a, "EMPTY", 5, 0)
    recalled = _lot(db_session, staff_ctx, a, "RECALLED", 12, 3)
    batches.update_batch(db_session, staff_ctx, recalled.id, {"status": BatchStatus.recalled})

    assert [lot.id for lot in batches.expiring_batches(db_session)] == [soon.id]
    assert [lot.batch_number for lot in batches.expiring_batches(db_session, days=60)] == ["SOON", "LATER"]
    assert [lot.id for lot in batches.expired_batches(db_session)] == [past.id]


def test_list_batches_filters_and_pages(db_session, staff_ctx, make_product):
    a = make_product(name="A")
    b = make_product(name="B")
    _lot(db_session, staff_ctx, a, "A-1", 10, 1)
    _lot(db_session, staff_ctx, a, "A-2", 100, 1)
    _lot(db_session, staff_ctx, b, "B-1", -1, 1)

    page = batches.list_batches(db_session, page=1, limit=2)
    assert (page["total"], page["total_pages"], page["current_page"]) == (3, 2, 1)
    assert [lot.batch_number for lot in page["batches"]] == ["B-1", "A-1"]

    assert [lot.batch_number for lot in batches.list_batches(db_session, product_id=a.id, sort_order="desc")["batches"]] == [
        "A-2",
        "A-1",
    ]
    assert [lot.batch_number for lot in batches.list_batches(db_session, expiry_status="expiring")["batches"]] == ["A-1"]
    assert [lot.batch_number for lot in batches.list_batches(db_session, status=BatchStatus.expired)["batches"]] == ["B-1"]

    with pytest.raises(ValidationError):
        batches.list_batches(db_session, sort_by="password")


def test_analytics(db_session, staff_ctx, make_product):
    a = make_product()
    _lot(db_session, staff_ctx, a, "SOON", 10, 5, unit_cost=Decimal("2.00"))
    _lot(db_session, staff_ctx, a, "LATER", 45, 4, unit_cost=Decimal("1.50"))
    _lot(db_session, staff_ctx, a, "PAST", -3, 2, unit_cost=Decimal("1.00"))

    result = batches.analytics(db_session)

    assert result["status_distribution"] == {"active": 2, "expired": 1}
    assert result["expiry_analysis"] == {"expired": 1, "expiring_30_days": 1, "active": 1}
    assert result["stock_value"] == {"total_value": 18.0, "total_quantity": 11}


def test_find_by_code(db_session, staff_ctx, make_product):
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-1", 90, 1, barcode="8901234567890", qr_code="QR-LOT-1")

    assert batches.find_by_code(db_session, "barcode", "8901234567890").id == lot.id
    assert batches.find_by_code(db_session, "qr", "QR-LOT-1").id == lot.id
    with pytest.raises(NotFoundError):
        batches.find_by_code(db_session, "barcode", "QR-LOT-1")


# ---------- écritures ----------
def test_create_batch_optionally_updates_stock(db_session, staff_ctx, make_product):
    a = make_product()

    batches.create_batch(
        db_session,
        staff_ctx,
        batches.BatchInput(product_id=a.id, batch_number="QUIET", expiry_date=date.today() + timedelta(days=90), initial_quantity=4),
    )
    lot = _lot(db_session, staff_ctx, a, "LOUD", 90, 6)

    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 6
    mv = db_session.execute(select(StockMovement)).scalars().one()
    assert mv.reason == "New batch received: LOUD"
    assert mv.batch_number == "LOUD" and mv.expiry_date == lot.expiry_date


def test_create_batch_conflicts(db_session, staff_ctx, make_product):
    a = make_product()
    _lot(db_session, staff_ctx, a, "LOT-1", 90, 1, barcode="8901234567890")

    with pytest.raises(ConflictError) as exc:
        _lot(db_session, staff_ctx, a, "LOT-1", 90, 1)
    assert exc.value.message == "Batch already exists for this product"

    with pytest.raises(ConflictError):
        _lot(db_session, staff_ctx, a, "LOT-2", 90, 1, barcode="8901234567890")

    db_session.expire_all()
    assert db_session.query(Batch).count() == 1
    assert db_session.get(Product, a.id).stock_quantity == 1


def test_create_batch_validates_references(db_session, staff_ctx):
    with pytest.raises(ValidationError) as exc:
        batches.create_batch(
            db_session,
            staff_ctx,
            batches.BatchInput(product_id=999, batch_number=" ", expiry_date=date.today(), initial_quantity=-1),
        )

    assert {e["field"] for e in exc.value.errors} == {"batch_number", "initial_quantity", "product_id"}


def test_adjust_batch_quantity_moves_batch_and_ledger(db_session, staff_ctx, make_product):
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-1", 90, 5)

    lot = batches.adjust_batch_quantity(db_session, staff_ctx, lot.id, -5, "breakage")
    assert lot.current_quantity == 0
    assert lot.status == BatchStatus.depleted

    with pytest.raises(ValidationError):
        batches.adjust_batch_quantity(db_session, staff_ctx, lot.id, -1)

    db_session.expire_all()
    assert db_session.get(Product, a.id).stock_quantity == 0
    assert inventory.verify_ledger(db_session, a.id)["movement_count"] == 2


def test_update_batch_recomputes_status(db_session, staff_ctx, make_product):
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-1", 90, 5)

    lot = batches.update_batch(db_session, staff_ctx, lot.id, {"expiry_date": date.today() - timedelta(days=1)})
    assert lot.status == BatchStatus.expired

    lot = batches.update_batch(db_session, staff_ctx, lot.id, {"status": BatchStatus.recalled, "notes": "supplier recall"})
    assert lot.status == BatchStatus.recalled
    assert lot.last_modified_by == staff_ctx.user_id

    with pytest.raises(ValidationError):
        batches.update_batch(db_session, staff_ctx, lot.id, {"status": BatchStatus.depleted})
    with pytest.raises(ValidationError):
        batches.update_batch(db_session, staff_ctx, lot.id, {"current_quantity": 99})


def test_mark_expired(db_session, staff_ctx, make_product):
    a = make_product()
    lot = _lot(db_session, staff_ctx, a, "LOT-1", 2, 5)

    assert batches.mark_expired(db_session, today=date.today() + timedelta(days=3)) == 1
    db_session.commit()

    assert db_session.get(Batch, lot.id).status == BatchStatus.expired
