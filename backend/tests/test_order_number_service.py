"""
Order number generation tests.

Covers the scan-based preview (non-reserving, A9999 -> B0001) and the
counter-backed allocation used by order creation.
"""

import re
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from epp_orders.extensions import db
from epp_orders.models import Order
from epp_orders.services import order_number_service
from epp_orders.services.order_number_service import (
    OrderNumberError,
    format_sequence,
    increment_sequence,
    sequence_value,
)


DAY = date(2026, 3, 5)


def _persist_order(order_number: str):
    order = Order(order_number=order_number, employee_id="EMP-9", order_date=DAY)
    db.session.add(order)
    db.session.commit()
    return order


def test_sequence_helpers():
    assert sequence_value("A", 1) == 1
    assert sequence_value("A", 9999) == 9999
    assert sequence_value("B", 1) == 10001
    assert increment_sequence("A", 41) == ("A", 42)
    assert increment_sequence("A", 9999) == ("B", 1)
    assert format_sequence(10001) == "B0001"
    with pytest.raises(OrderNumberError):
        increment_sequence("Z", 9999)


def test_generate_without_orders_is_not_reserving(db_session):
    first = order_number_service.generate_order_number(DAY)
    second = order_number_service.generate_order_number(DAY)
    assert first == "ORD-20260305-A0001"
    assert second == first


def test_generate_increments_highest_existing(db_session):
    _persist_order("ORD-20260305-A0007")
    _persist_order("ORD-20260305-A0003")
    assert order_number_service.generate_order_number(DAY) == "ORD-20260305-A0008"


def test_generate_rolls_over_to_next_letter(db_session):
    _persist_order("ORD-20260305-A9999")
    assert order_number_service.generate_order_number(DAY) == "ORD-20260305-B0001"


def test_generate_ignores_other_days_and_malformed_numbers(db_session):
    _persist_order("ORD-20260304-A0500")
    _persist_order("ORD-20260305-legacy")
    assert order_number_service.generate_order_number(DAY) == "ORD-20260305-A0001"


def test_generate_falls_back_on_database_error(db_session, monkeypatch):
    def _boom(prefix):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(order_number_service, "_highest_sequence_value", _boom)
    number = order_number_service.generate_order_number(DAY)
    assert re.match(r"^ORD-\d{13}-[A-Z0-9]{7}$", number)


def test_allocate_returns_distinct_sequential_numbers(db_session):
    numbers = [order_number_service.allocate_order_number(DAY) for _ in range(3)]
    assert numbers == [
        "ORD-20260305-A0001",
        "ORD-20260305-A0002",
        "ORD-20260305-A0003",
    ]


def test_allocate_seeds_from_existing_orders(db_session):
    _persist_order("ORD-20260305-A9999")
    assert order_number_service.allocate_order_number(DAY) == "ORD-20260305-B0001"
    assert order_number_service.allocate_order_number(DAY) == "ORD-20260305-B0002"


def test_allocate_counts_each_day_separately(db_session):
    assert order_number_service.allocate_order_number(DAY) == "ORD-20260305-A0001"
    assert order_number_service.allocate_order_number(date(2026, 3, 6)) == "ORD-20260306-A0001"
