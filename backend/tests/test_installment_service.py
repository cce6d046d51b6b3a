"""
Installment schedule and payroll deduction tests.
"""

from datetime import date

import pytest

from epp_orders.errors import ConflictError, NotFoundError, ValidationError
from epp_orders.extensions import db
from epp_orders.models import Installment
from epp_orders.services import installment_service, transaction_service
from epp_orders.services.installment_service import (
    calculate_cutoff_dates,
    calculate_scheduled_date,
    split_amount,
)


def test_cutoffs_start_in_current_month_on_or_before_15th(app):
    assert calculate_cutoff_dates(date(2026, 1, 15), 4) == [
        date(2026, 1, 15),
        date(2026, 1, 31),
        date(2026, 2, 15),
        date(2026, 2, 28),
    ]


def test_cutoffs_start_next_month_after_15th(app):
    assert calculate_cutoff_dates(date(2026, 1, 16), 2) == [
        date(2026, 2, 15),
        date(2026, 2, 28),
    ]


def test_cutoffs_cross_year_and_leap_february(app):
    cutoffs = calculate_cutoff_dates(date(2027, 12, 20), 4)
    assert cutoffs == [
        date(2028, 1, 15),
        date(2028, 1, 31),
        date(2028, 2, 15),
        date(2028, 2, 29),
    ]


def test_scheduled_date_defaults_to_configured_delay(app):
    assert calculate_scheduled_date(date(2026, 1, 31)) == date(2026, 2, 5)
    assert calculate_scheduled_date(date(2026, 1, 31), 3) == date(2026, 2, 3)


def test_split_amount_last_absorbs_rounding():
    amounts = split_amount(100000, 12)
    assert amounts[:-1] == [8333] * 11
    assert amounts[-1] == 100000 - 8333 * 11
    assert sum(amounts) == 100000


def test_split_amount_rounds_half_up():
    # 1000 / 6 = 166.67 -> 167; last = 1000 - 167 * 5
    assert split_amount(1000, 6) == [167, 167, 167, 167, 167, 165]


def test_split_amount_never_goes_negative():
    amounts = split_amount(5, 6)
    assert all(a >= 0 for a in amounts)
    assert sum(amounts) == 5


def test_generate_three_months_even_split(db_session, make_item, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 1}]).order

    installments = installment_service.generate_installments(order.id, 3, 600000, date(2026, 1, 10))

    assert len(installments) == 6
    assert [i.amount_cents for i in installments] == [100000] * 6
    assert sum(i.amount_cents for i in installments) == 600000
    assert [i.cut_off_date for i in installments] == [
        date(2026, 1, 15),
        date(2026, 1, 31),
        date(2026, 2, 15),
        date(2026, 2, 28),
        date(2026, 3, 15),
        date(2026, 3, 31),
    ]
    assert [i.scheduled_date for i in installments] == [
        date(2026, 1, 20),
        date(2026, 2, 5),
        date(2026, 2, 20),
        date(2026, 3, 5),
        date(2026, 3, 20),
        date(2026, 4, 5),
    ]
    assert [i.installment_number for i in installments] == [1, 2, 3, 4, 5, 6]
    assert all(i.status == "PENDING" for i in installments)


@pytest.mark.parametrize("months,total", [(0, 1000), (-1, 1000), (3, -1)])
def test_generate_rejects_invalid_input(db_session, months, total):
    with pytest.raises(ValidationError):
        installment_service.generate_installments(1, months, total, date(2026, 1, 10))


def test_mark_deducted_records_ledger_payment(db_session, make_item, make_order):
    item = make_item(stock=5, selling_price_cents=10000)
    result = make_order([{"item_id": item.id, "quantity": 1}], payment_type="INSTALLMENT", installment_months=1)
    first = result.installments[0]

    updated = installment_service.mark_installment_deducted(first.id, "PR-2026-01A", "REF-1")

    assert updated.status == "DEDUCTED"
    assert updated.deducted_date is not None
    assert updated.payroll_batch_id == "PR-2026-01A"

    summary = transaction_service.get_transaction_summary(result.order.id)
    assert summary["paid_amount_cents"] == first.amount_cents
    assert summary["status"] == "PROCESSING"
    assert summary["payment_count"] == 1
    assert summary["last_payment"]["installment_id"] == first.id
    assert summary["last_payment"]["payroll_batch_id"] == "PR-2026-01A"


def test_mark_all_deducted_completes_ledger(db_session, make_item, make_order):
    item = make_item(stock=5, selling_price_cents=10000)
    result = make_order([{"item_id": item.id, "quantity": 1}], payment_type="INSTALLMENT", installment_months=1)

    for inst in result.installments:
        installment_service.mark_installment_deducted(inst.id)

    summary = transaction_service.get_transaction_summary(result.order.id)
    assert summary["balance_cents"] == 0
    assert summary["status"] == "COMPLETED"


def test_mark_deducted_twice_conflicts(db_session, make_item, make_order):
    item = make_item(stock=5, selling_price_cents=10000)
    result = make_order([{"item_id": item.id, "quantity": 1}], payment_type="INSTALLMENT", installment_months=1)
    inst_id = result.installments[0].id

    installment_service.mark_installment_deducted(inst_id)
    with pytest.raises(ConflictError):
        installment_service.mark_installment_deducted(inst_id)


def test_mark_deducted_survives_missing_ledger(db_session, make_item, make_order):
    item = make_item(stock=5, selling_price_cents=10000)
    result = make_order([{"item_id": item.id, "quantity": 1}], payment_type="INSTALLMENT", installment_months=1)
    db.session.delete(result.transaction)
    db.session.commit()

    updated = installment_service.mark_installment_deducted(result.installments[0].id)

    assert updated.status == "DEDUCTED"


def test_mark_deducted_missing_installment(db_session):
    with pytest.raises(NotFoundError):
        installment_service.mark_installment_deducted(999999)


def test_pending_for_payroll_and_summary(db_session, make_item, make_order):
    item = make_item(stock=5, selling_price_cents=10000)
    result = make_order([{"item_id": item.id, "quantity": 1}], payment_type="INSTALLMENT", installment_months=2)

    due = installment_service.get_pending_installments_for_payroll(date(2026, 1, 31))
    assert [i.cut_off_date for i in due] == [date(2026, 1, 15), date(2026, 1, 31)]

    installment_service.mark_installment_deducted(due[0].id)
    due_after = installment_service.get_pending_installments_for_payroll(date(2026, 1, 31))
    assert len(due_after) == 1

    summary = installment_service.get_order_installment_summary(result.order.id)
    assert summary["total_installments"] == 4
    assert summary["paid_count"] == 1
    assert summary["pending_count"] == 3
    assert summary["total_amount_cents"] == result.order.total_cents
    assert summary["paid_amount_cents"] + summary["remaining_amount_cents"] == result.order.total_cents
    assert db.session.query(Installment).filter_by(order_id=result.order.id).count() == 4
