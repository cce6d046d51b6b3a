# Overview: Bi-monthly payroll installment schedules and payroll deduction bookkeeping.

"""
Installment Scheduling

PAYROLL CALENDAR:
Two cutoffs per calendar month: the 15th and the last day of the month.
An order placed on or before the 15th starts in its own month; later orders
start the following month. Each installment is paid out
INSTALLMENT_PAYMENT_DELAY_DAYS (default 5) after its cutoff.

AMOUNTS (integer cents):
    count = months * 2
    base  = round_half_up(total / count)
    last  = total - base * (count - 1)

so the installments always sum to exactly the order total.

DEDUCTION:
mark_installment_deducted() flips an installment to DEDUCTED and records the
payment in the order's transaction ledger. A ledger failure is logged and does
not undo the deduction.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ConflictError, NotFoundError, OrderEngineError, ValidationError
from ..extensions import db
from ..models import Installment, Order
from ..time_utils import add_months, as_date, last_day_of_month, utcnow
from .concurrency import lock_for_update, run_with_retry
from .transaction_service import record_installment_payment

logger = logging.getLogger(__name__)

FIRST_CUTOFF_DAY = 15
INSTALLMENTS_PER_MONTH = 2

INSTALLMENT_STATUS_PENDING = "PENDING"
INSTALLMENT_STATUS_DEDUCTED = "DEDUCTED"
INSTALLMENT_STATUS_FAILED = "FAILED"


def _payment_delay_days() -> int:
    return int(current_app.config.get("INSTALLMENT_PAYMENT_DELAY_DAYS", 5))


def calculate_cutoff_dates(start_date, installment_count: int) -> list[date]:
    """15th / month-end cutoffs, starting in the first month that still has its 15th ahead."""
    start = as_date(start_date)
    year, month = start.year, start.month
    if start.day > FIRST_CUTOFF_DAY:
        year, month = add_months(year, month, 1)

    cutoffs: list[date] = []
    for i in range(installment_count):
        y, m = add_months(year, month, i // INSTALLMENTS_PER_MONTH)
        if i % INSTALLMENTS_PER_MONTH == 0:
            cutoffs.append(date(y, m, FIRST_CUTOFF_DAY))
        else:
            cutoffs.append(last_day_of_month(y, m))
    return cutoffs


def calculate_scheduled_date(cutoff_date: date, days_after: int | None = None) -> date:
    if days_after is None:
        days_after = _payment_delay_days()
    return cutoff_date + timedelta(days=days_after)


def split_amount(total_cents: int, count: int) -> list[int]:
    """
    Split total into count installments; the last one absorbs rounding.

    Base amount is rounded half-up. When that would leave the last installment
    negative (tiny totals), the base is rounded down instead.
    """
    if count < 1:
        raise ValidationError("installment count must be >= 1")
    if total_cents < 0:
        raise ValidationError("total_cents must be >= 0")

    base = (total_cents + count // 2) // count
    last = total_cents - base * (count - 1)
    if last < 0:
        base = total_cents // count
        last = total_cents - base * (count - 1)
    return [base] * (count - 1) + [last]


def generate_installments_inner(order_id: int, months: int, total_cents: int, start_date=None) -> list[Installment]:
    """Add the installment rows for an order to the session (no commit)."""
    if months is None or int(months) < 1:
        raise ValidationError("installment months must be >= 1")
    months = int(months)

    count = months * INSTALLMENTS_PER_MONTH
    amounts = split_amount(int(total_cents), count)
    cutoffs = calculate_cutoff_dates(start_date, count)
    delay = _payment_delay_days()

    logger.info(
        "Generating %s installments for order %s: %s months x %s cutoffs",
        count,
        order_id,
        months,
        INSTALLMENTS_PER_MONTH,
    )

    installments: list[Installment] = []
    for i, (amount, cutoff) in enumerate(zip(amounts, cutoffs), start=1):
        installment = Installment(
            order_id=order_id,
            installment_number=i,
            amount_cents=amount,
            status=INSTALLMENT_STATUS_PENDING,
            cut_off_date=cutoff,
            scheduled_date=calculate_scheduled_date(cutoff, delay),
            notes=f"Installment {i} of {count} for {months}-month plan",
        )
        db.session.add(installment)
        installments.append(installment)
        logger.debug(
            "Installment %s/%s: amount=%s cutoff=%s scheduled=%s",
            i,
            count,
            amount,
            cutoff.isoformat(),
            installment.scheduled_date.isoformat(),
        )

    db.session.flush()
    logger.info("Generated %s installments for order %s", len(installments), order_id)
    return installments


def generate_installments(order_id: int, months: int, total_cents: int, start_date=None) -> list[Installment]:
    def _op() -> list[Installment]:
        installments = generate_installments_inner(order_id, months, total_cents, start_date)
        db.session.commit()
        return installments

    return run_with_retry(_op)


def mark_installment_deducted(
    installment_id: int,
    payroll_batch_id: str | None = None,
    deduction_reference: str | None = None,
) -> Installment:
    def _op() -> Installment:
        installment = lock_for_update(db.session.query(Installment).filter_by(id=installment_id)).first()
        if not installment:
            raise NotFoundError(f"Installment {installment_id} not found")
        if installment.status == INSTALLMENT_STATUS_DEDUCTED:
            raise ConflictError(f"Installment {installment_id} is already deducted")

        installment.status = INSTALLMENT_STATUS_DEDUCTED
        installment.deducted_date = utcnow()
        installment.payroll_batch_id = payroll_batch_id
        installment.deduction_reference = deduction_reference
        db.session.commit()
        return installment

    installment = run_with_retry(_op)
    logger.info(
        "Installment %s marked as DEDUCTED (batch: %s, ref: %s)",
        installment_id,
        payroll_batch_id,
        deduction_reference,
    )

    try:
        record_installment_payment(
            installment.order_id,
            installment.id,
            installment.amount_cents,
            payroll_batch_id=payroll_batch_id,
            payroll_reference=deduction_reference,
            payroll_date=utcnow(),
            processed_by="SYSTEM",
            notes=f"Installment {installment.installment_number} deducted",
        )
    except (OrderEngineError, SQLAlchemyError) as exc:
        logger.error("Failed to record payment in transaction ledger for installment %s: %s", installment_id, exc)

    return installment


def get_pending_installments_for_payroll(cutoff_date=None) -> list[Installment]:
    """PENDING installments whose cutoff is on or before cutoff_date (default today)."""
    cutoff = as_date(cutoff_date)
    installments = (
        db.session.query(Installment)
        .join(Order, Order.id == Installment.order_id)
        .filter(
            Installment.status == INSTALLMENT_STATUS_PENDING,
            Installment.cut_off_date <= cutoff,
        )
        .order_by(Installment.cut_off_date.asc(), Installment.order_id.asc(), Installment.installment_number.asc())
        .all()
    )
    logger.info("Found %s pending installments for cutoff date %s", len(installments), cutoff.isoformat())
    return installments


def get_order_installment_summary(order_id: int) -> dict:
    installments = (
        db.session.query(Installment)
        .filter_by(order_id=order_id)
        .order_by(Installment.installment_number.asc())
        .all()
    )

    def _total(statuses: set[str]) -> int:
        return sum(i.amount_cents for i in installments if i.status in statuses)

    return {
        "total_installments": len(installments),
        "paid_count": sum(1 for i in installments if i.status == INSTALLMENT_STATUS_DEDUCTED),
        "pending_count": sum(1 for i in installments if i.status == INSTALLMENT_STATUS_PENDING),
        "failed_count": sum(1 for i in installments if i.status == INSTALLMENT_STATUS_FAILED),
        "total_amount_cents": sum(i.amount_cents for i in installments),
        "paid_amount_cents": _total({INSTALLMENT_STATUS_DEDUCTED}),
        "remaining_amount_cents": _total({INSTALLMENT_STATUS_PENDING, INSTALLMENT_STATUS_FAILED}),
        "installments": installments,
    }
