"""
Stock ledger tests: validation, deduction, restoration and idempotency.
"""

import pytest

from epp_orders.errors import NotFoundError
from epp_orders.extensions import db
from epp_orders.models import Item, StockMovement
from epp_orders.services import stock_service


def _stock(item_id):
    db.session.expire_all()
    return db.session.get(Item, item_id).stock_quantity


def test_validate_reports_single_shortage(db_session, make_item, make_order):
    laptop = make_item("Laptop", stock=10)
    mouse = make_item("Mouse", stock=1, selling_price_cents=2000)
    order = make_order([
        {"item_id": laptop.id, "quantity": 2},
        {"item_id": mouse.id, "quantity": 3},
    ]).order

    shortages = stock_service.validate_stock_for_order(order.id)

    assert len(shortages) == 1
    shortage = shortages[0]
    assert shortage.item_id == mouse.id
    assert shortage.item_name == "Mouse"
    assert shortage.requested == 3
    assert shortage.available == 1
    assert shortage.shortage == 2
    assert _stock(mouse.id) == 1


def test_validate_with_enough_stock_is_empty(db_session, make_item, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 5}]).order
    assert stock_service.validate_stock_for_order(order.id) == []


def test_validate_sums_quantities_of_repeated_item(db_session, make_item, make_order):
    item = make_item(stock=3)
    order = make_order([
        {"item_id": item.id, "quantity": 2},
        {"item_id": item.id, "quantity": 2},
    ]).order
    shortages = stock_service.validate_stock_for_order(order.id)
    assert [(s.requested, s.shortage) for s in shortages] == [(4, 1)]


def test_validate_missing_order(db_session):
    with pytest.raises(NotFoundError):
        stock_service.validate_stock_for_order(424242)


def test_deduct_and_restore_are_applied_once(db_session, make_item, make_order):
    item = make_item(stock=10)
    order = make_order([{"item_id": item.id, "quantity": 4}]).order

    stock_service.deduct_stock_for_order(order.id)
    stock_service.deduct_stock_for_order(order.id)
    assert _stock(item.id) == 6

    stock_service.restore_stock_for_order(order.id)
    stock_service.restore_stock_for_order(order.id)
    assert _stock(item.id) == 10

    movements = db.session.query(StockMovement).filter_by(order_id=order.id).order_by(StockMovement.id).all()
    assert [(m.direction, m.stock_before, m.stock_after) for m in movements] == [
        ("DEDUCT", 10, 6),
        ("RESTORE", 6, 10),
    ]


def test_deduct_never_goes_below_zero(db_session, make_item, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 5}]).order
    db.session.get(Item, item.id).stock_quantity = 2
    db.session.commit()

    stock_service.deduct_stock_for_order(order.id)

    assert _stock(item.id) == 0


def test_restore_after_clamped_deduction_returns_only_what_was_taken(db_session, make_item, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 5}]).order
    db.session.get(Item, item.id).stock_quantity = 2
    db.session.commit()

    stock_service.deduct_stock_for_order(order.id)
    assert _stock(item.id) == 0

    movements = stock_service.restore_stock_for_order(order.id)

    assert _stock(item.id) == 2
    assert [(m.quantity, m.stock_before, m.stock_after) for m in movements] == [(2, 0, 2)]


def test_restore_without_deduction_is_noop(db_session, make_item, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 2}]).order

    assert stock_service.restore_stock_for_order(order.id) == []
    assert _stock(item.id) == 5


def test_missing_items_are_skipped(db_session, make_item, make_order):
    kept = make_item("Kept", stock=5)
    gone = make_item("Gone", stock=5)
    order = make_order([
        {"item_id": kept.id, "quantity": 1},
        {"item_id": gone.id, "quantity": 1},
    ]).order
    db.session.delete(db.session.get(Item, gone.id))
    db.session.commit()

    assert stock_service.validate_stock_for_order(order.id) == []
    movements = stock_service.deduct_stock_for_order(order.id)

    assert [m.item_id for m in movements] == [kept.id]
    assert _stock(kept.id) == 4


def test_deduct_bumps_item_version(db_session, make_item, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 1}]).order
    before = db.session.get(Item, item.id).version_id

    stock_service.deduct_stock_for_order(order.id)

    db.session.expire_all()
    assert db.session.get(Item, item.id).version_id == before + 1
