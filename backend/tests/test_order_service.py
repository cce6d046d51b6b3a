"""
Order creation tests: pricing, ledger and installments, routing.
"""

import pytest

from epp_orders.errors import NotFoundError, ValidationError
from epp_orders.models import Order, Transaction
from epp_orders.services import order_service
from epp_orders.services.order_service import calculate_order_totals


def test_totals_with_discount_and_tax(db_session, make_item):
    laptop = make_item(selling_price_cents=100000)
    mouse = make_item("Mouse", selling_price_cents=2500)

    totals = calculate_order_totals([
        {"item_id": laptop.id, "quantity": 2, "discount_cents": 1000},
        {"item_id": mouse.id, "quantity": 1},
    ])

    assert [line.subtotal_cents for line in totals.lines] == [199000, 2500]
    assert totals.subtotal_cents == 201500
    assert totals.discount_cents == 1000
    assert totals.tax_cents == 20150
    assert totals.total_cents == 221650


def test_tax_rounds_half_up(db_session, make_item):
    item = make_item(selling_price_cents=5)
    # 5 * 10% = 0.5 -> 1
    assert calculate_order_totals([{"item_id": item.id, "quantity": 1}]).tax_cents == 1
    assert calculate_order_totals([{"item_id": item.id, "quantity": 1}], tax_rate_bps=0).tax_cents == 0


def test_price_falls_back_to_retail_then_explicit_wins(db_session, make_item):
    item = make_item(selling_price_cents=None, retail_price_cents=4000)

    assert calculate_order_totals([{"item_id": item.id, "quantity": 1}]).lines[0].unit_price_cents == 4000
    explicit = calculate_order_totals([{"item_id": item.id, "quantity": 1, "unit_price_cents": 3500}])
    assert explicit.lines[0].unit_price_cents == 3500


def test_discount_never_makes_line_negative(db_session, make_item):
    item = make_item(selling_price_cents=1000)
    totals = calculate_order_totals([{"item_id": item.id, "quantity": 1, "discount_cents": 5000}])
    assert totals.lines[0].subtotal_cents == 0
    assert totals.total_cents == 0


@pytest.mark.parametrize("line_kwargs", [
    {"quantity": 0},
    {"quantity": 1, "discount_cents": -1},
    {"quantity": "two"},
])
def test_invalid_lines_raise(db_session, make_item, line_kwargs):
    item = make_item()
    with pytest.raises(ValidationError):
        calculate_order_totals([{"item_id": item.id, **line_kwargs}])


def test_unpriced_missing_and_ineligible_items_raise(db_session, make_item):
    unpriced = make_item("Free", selling_price_cents=None, retail_price_cents=None)
    hidden = make_item("Hidden", is_available=False)
    retired = make_item("Retired", status="DISCONTINUED")

    for item_id in (unpriced.id, hidden.id, retired.id, 999999):
        with pytest.raises(ValidationError):
            calculate_order_totals([{"item_id": item_id, "quantity": 1}])

    with pytest.raises(ValidationError):
        calculate_order_totals([])


def test_create_cash_order_persists_everything(db_session, make_item, standard_workflow, make_order):
    item = make_item(selling_price_cents=10000)

    result = make_order([{"item_id": item.id, "quantity": 3}], notes="For the new hire")

    order = result.order
    assert order.order_number == "ORD-20260110-A0001"
    assert order.status == "PENDING_APPROVAL"
    assert order.total_cents == 33000
    assert order.payment_method == "PAYROLL_DEDUCTION"
    assert order.installment_count is None
    assert [line.quantity for line in order.lines] == [3]
    assert result.installments == []
    assert result.is_routed
    assert order.workflow_id == standard_workflow.id
    assert order.current_approval_level == 1
    assert db_session.query(Transaction).filter_by(order_id=order.id).one().type == "PURCHASE"
    assert result.notification.ok

    second = make_order([{"item_id": item.id, "quantity": 1}])
    assert second.order.order_number == "ORD-20260110-A0002"


def test_installment_order_defaults_to_configured_months(db_session, make_item, make_order):
    item = make_item(selling_price_cents=100000)

    result = make_order([{"item_id": item.id, "quantity": 1}], payment_type="installment")

    order = result.order
    assert order.payment_type == "INSTALLMENT"
    assert order.installment_months == 6
    assert order.installment_count == 12
    assert len(result.installments) == 12
    assert sum(i.amount_cents for i in result.installments) == order.total_cents
    assert order.installment_amount_cents == result.installments[0].amount_cents
    assert result.transaction.type == "INSTALLMENT"


def test_unrouted_order_is_kept_without_approvals(db_session, make_item, make_order, outbox):
    item = make_item()

    result = make_order([{"item_id": item.id, "quantity": 1}])

    assert not result.is_routed
    assert result.notification is None
    assert result.order.workflow_id is None
    assert result.order.approvals == []
    assert outbox.sent == []


def test_invalid_order_input_writes_nothing(db_session, make_item, make_order):
    item = make_item()

    with pytest.raises(ValidationError):
        make_order([{"item_id": item.id, "quantity": 1}], payment_type="BARTER")
    with pytest.raises(ValidationError):
        make_order([{"item_id": item.id, "quantity": 1}], payment_type="INSTALLMENT", installment_months=0)
    with pytest.raises(ValidationError):
        order_service.create_order("", [{"item_id": item.id, "quantity": 1}])
    with pytest.raises(ValidationError):
        make_order([{"item_id": 999999, "quantity": 1}])

    assert db_session.query(Order).count() == 0


def test_get_order(db_session, make_item, make_order):
    item = make_item()
    order_id = make_order([{"item_id": item.id, "quantity": 1}]).order.id

    assert order_service.get_order(order_id).id == order_id
    with pytest.raises(NotFoundError):
        order_service.get_order(999999)
