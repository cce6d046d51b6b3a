# Overview: Daily sequential order numbers (ORD-YYYYMMDD-A0001); scan-based and atomic-counter allocation.

"""
Order Number Generation

FORMAT:
    {PREFIX}-{YYYYMMDD}-{Letter}{0001-9999}
    A0001, A0002, ..., A9999, B0001, ..., Z9999

Sequences are ordered by letter_index * 10000 + number, so A9999 = 9999 and
B0001 = 10001.

TWO ENTRY POINTS:
- generate_order_number(): reads the day's existing order numbers and returns
  the next one. It does not reserve anything, so two calls before either order
  is saved return the same number. Any database failure yields a timestamp
  fallback number instead of an error.
- allocate_order_number(): reserves the next number through a per-day counter
  row (UPDATE ... SET last_value = last_value + 1). Concurrent callers never
  receive the same value. The counter is seeded from the scan on first use of
  a day, so numbers written before the counter existed are respected.
  Order creation uses this one.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import time
from datetime import date as date_type

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConflictError
from ..extensions import db
from ..models import Order, OrderNumberSequence
from ..time_utils import as_date
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

SEQUENCE_BASE = 10000
MAX_NUMBER = 9999
_FALLBACK_ALPHABET = string.ascii_uppercase + string.digits


class OrderNumberError(ConflictError):
    """Raised when a day's sequence space (Z9999) is exhausted."""
    pass


def _prefix() -> str:
    return current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")


def day_prefix(day: date_type) -> str:
    return f"{_prefix()}-{day.strftime('%Y%m%d')}-"


def sequence_value(letter: str, number: int) -> int:
    return (ord(letter) - ord("A")) * SEQUENCE_BASE + number


def increment_sequence(letter: str, number: int) -> tuple[str, int]:
    """A0001 -> A0002, A9999 -> B0001."""
    if number < MAX_NUMBER:
        return letter, number + 1
    if letter >= "Z":
        raise OrderNumberError("Order number sequence exhausted for the day (Z9999)")
    return chr(ord(letter) + 1), 1


def format_sequence(value: int) -> str:
    letter_index, number = divmod(value, SEQUENCE_BASE)
    if not 1 <= number <= MAX_NUMBER or not 0 <= letter_index <= 25:
        raise ValueError(f"invalid sequence value: {value}")
    return f"{chr(ord('A') + letter_index)}{number:04d}"


def fallback_order_number() -> str:
    suffix = "".join(secrets.choice(_FALLBACK_ALPHABET) for _ in range(7))
    return f"{_prefix()}-{int(time.time() * 1000)}-{suffix}"


def _highest_sequence_value(prefix: str) -> int:
    """Highest existing sequence value for the prefix, 0 when none."""
    pattern = re.compile(rf"^{re.escape(prefix)}([A-Z])(\d{{4}})$")
    rows = (
        db.session.query(Order.order_number)
        .filter(Order.order_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (order_number,) in rows:
        match = pattern.match(order_number or "")
        if not match:
            continue
        value = sequence_value(match.group(1), int(match.group(2)))
        highest = max(highest, value)
    return highest


def generate_order_number(date=None) -> str:
    """
    Next order number for the day, derived from persisted orders.

    Non-reserving: see allocate_order_number() for the collision-free variant.
    """
    day = as_date(date)
    prefix = day_prefix(day)
    try:
        highest = _highest_sequence_value(prefix)
    except SQLAlchemyError as exc:
        db.session.rollback()
        fallback = fallback_order_number()
        logger.error("Error generating order number: %s", exc)
        logger.warning("Using fallback order number: %s", fallback)
        return fallback

    if highest == 0:
        order_number = f"{prefix}A0001"
        logger.info("Generated new order number: %s (first of the day)", order_number)
        return order_number

    previous = format_sequence(highest)
    letter, number = increment_sequence(previous[0], int(previous[1:]))
    order_number = f"{prefix}{letter}{number:04d}"
    logger.info("Generated new order number: %s (previous: %s)", order_number, previous)
    return order_number


def _bump_counter(prefix: str, day: date_type) -> int | None:
    stmt = (
        update(OrderNumberSequence)
        .where(
            OrderNumberSequence.prefix == prefix,
            OrderNumberSequence.sequence_date == day,
        )
        .values(last_value=OrderNumberSequence.last_value + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    value = (
        db.session.query(OrderNumberSequence.last_value)
        .filter_by(prefix=prefix, sequence_date=day)
        .scalar()
    )
    if value % SEQUENCE_BASE == 0:
        # X0000 is not a valid number; step onto the next letter's 0001
        db.session.execute(stmt)
        db.session.flush()
        value += 1
    return value


def allocate_order_number_in_session(date=None) -> str:
    """
    Reserve the next number inside the caller's unit of work (no commit).

    The counter row stays locked by the UPDATE until the caller commits.
    """
    day = as_date(date)
    prefix = day_prefix(day)

    value = _bump_counter(prefix, day)
    if value is None:
        seed = _highest_sequence_value(prefix)
        letter, number = increment_sequence(*_split(seed)) if seed else ("A", 1)
        value = sequence_value(letter, number)
        try:
            with db.session.begin_nested():
                db.session.add(OrderNumberSequence(prefix=prefix, sequence_date=day, last_value=value))
        except IntegrityError:
            # Another allocator created the day's row first
            value = _bump_counter(prefix, day)
            if value is None:
                raise

    if value // SEQUENCE_BASE > 25:
        raise OrderNumberError("Order number sequence exhausted for the day (Z9999)")

    order_number = f"{prefix}{format_sequence(value)}"
    logger.info("Allocated order number %s", order_number)
    return order_number


def _split(value: int) -> tuple[str, int]:
    formatted = format_sequence(value)
    return formatted[0], int(formatted[1:])


def allocate_order_number(date=None) -> str:
    """Reserve and commit the next order number for the day."""
    def _op() -> str:
        order_number = allocate_order_number_in_session(date)
        db.session.commit()
        return order_number

    return run_with_retry(_op)
