# Overview: Payment ledger per order; installment payments, summaries, and reconciliation.

from __future__ import annotations

import logging
import time

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Transaction
from ..time_utils import utcnow, to_utc_z, as_date
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

TRANSACTION_TYPE_PURCHASE = "PURCHASE"
TRANSACTION_TYPE_INSTALLMENT = "INSTALLMENT"

TRANSACTION_STATUS_PENDING = "PENDING"
TRANSACTION_STATUS_PROCESSING = "PROCESSING"
TRANSACTION_STATUS_COMPLETED = "COMPLETED"


def _get_transaction_for_order(order_id: int, *, for_update: bool = False) -> Transaction:
    query = db.session.query(Transaction).filter_by(order_id=order_id)
    if for_update:
        query = lock_for_update(query)
    transaction = query.first()
    if not transaction:
        raise NotFoundError(f"Transaction not found for order {order_id}")
    return transaction


def create_transaction_for_order_inner(
    order_id: int,
    employee_id: str,
    total_cents: int,
    payment_type: str,
    payment_method: str | None,
) -> Transaction:
    """Add the ledger row for a new order to the session (no commit)."""
    if total_cents < 0:
        raise ValidationError("total_cents must be >= 0")

    transaction = Transaction(
        transaction_number=f"TXN-{int(time.time() * 1000)}-{order_id}",
        order_id=order_id,
        employee_id=employee_id,
        type=TRANSACTION_TYPE_INSTALLMENT if payment_type == "INSTALLMENT" else TRANSACTION_TYPE_PURCHASE,
        status=TRANSACTION_STATUS_PENDING,
        total_amount_cents=total_cents,
        paid_amount_cents=0,
        balance_cents=total_cents,
        payment_method=payment_method,
        payment_history=[],
    )
    db.session.add(transaction)
    db.session.flush()
    logger.info("Transaction ledger created for order %s: %s", order_id, transaction.transaction_number)
    return transaction


def create_transaction_for_order(
    order_id: int,
    employee_id: str,
    total_cents: int,
    payment_type: str,
    payment_method: str | None = None,
) -> Transaction:
    def _op() -> Transaction:
        transaction = create_transaction_for_order_inner(
            order_id, employee_id, total_cents, payment_type, payment_method
        )
        db.session.commit()
        return transaction

    return run_with_retry(_op)


def record_installment_payment_inner(
    order_id: int,
    installment_id: int,
    amount_cents: int,
    *,
    payroll_batch_id: str | None = None,
    payroll_reference: str | None = None,
    payroll_date=None,
    processed_by: str | None = None,
    notes: str | None = None,
) -> Transaction:
    transaction = _get_transaction_for_order(order_id, for_update=True)

    record = {
        "installment_id": installment_id,
        "amount_cents": amount_cents,
        "paid_at": to_utc_z(utcnow()),
        "payroll_batch_id": payroll_batch_id,
        "payroll_reference": payroll_reference,
        "payroll_date": as_date(payroll_date).isoformat(),
        "processed_by": processed_by,
        "notes": notes,
    }
    # Reassign so the JSON column is flagged dirty
    transaction.payment_history = list(transaction.payment_history or []) + [record]

    transaction.paid_amount_cents = transaction.paid_amount_cents + amount_cents
    transaction.balance_cents = transaction.total_amount_cents - transaction.paid_amount_cents
    transaction.status = (
        TRANSACTION_STATUS_COMPLETED if transaction.balance_cents <= 0 else TRANSACTION_STATUS_PROCESSING
    )
    db.session.flush()

    logger.info(
        "Payment recorded for order %s: paid %s, total paid %s/%s, balance %s, status %s",
        order_id,
        amount_cents,
        transaction.paid_amount_cents,
        transaction.total_amount_cents,
        transaction.balance_cents,
        transaction.status,
    )
    return transaction


def record_installment_payment(order_id: int, installment_id: int, amount_cents: int, **details) -> Transaction:
    """
    Append an installment payment to the order's ledger.

    Status becomes COMPLETED once the balance reaches zero, PROCESSING before that.
    """
    def _op() -> Transaction:
        transaction = record_installment_payment_inner(order_id, installment_id, amount_cents, **details)
        db.session.commit()
        return transaction

    return run_with_retry(_op)


def get_transaction_summary(order_id: int) -> dict | None:
    transaction = db.session.query(Transaction).filter_by(order_id=order_id).first()
    if not transaction:
        return None

    history = list(transaction.payment_history or [])
    return {
        "transaction_number": transaction.transaction_number,
        "total_amount_cents": transaction.total_amount_cents,
        "paid_amount_cents": transaction.paid_amount_cents,
        "balance_cents": transaction.balance_cents,
        "status": transaction.status,
        "payment_count": len(history),
        "last_payment": history[-1] if history else None,
        "payment_history": history,
    }


def reconcile_transaction(order_id: int, reconciled_by: str, notes: str | None = None) -> Transaction:
    if not reconciled_by:
        raise ValidationError("reconciled_by is required")

    def _op() -> Transaction:
        transaction = _get_transaction_for_order(order_id, for_update=True)
        if transaction.is_reconciled:
            raise ConflictError(f"Transaction already reconciled for order {order_id}")

        transaction.is_reconciled = True
        transaction.reconciled_at = utcnow()
        transaction.reconciled_by = reconciled_by
        transaction.notes = notes or transaction.notes
        db.session.commit()
        logger.info("Transaction reconciled for order %s by %s", order_id, reconciled_by)
        return transaction

    return run_with_retry(_op)


def get_unreconciled_transactions() -> dict:
    """Completed but unreconciled ledgers, oldest update first."""
    transactions = (
        db.session.query(Transaction)
        .filter(
            Transaction.is_reconciled.is_(False),
            Transaction.status == TRANSACTION_STATUS_COMPLETED,
        )
        .order_by(Transaction.updated_at.asc(), Transaction.id.asc())
        .all()
    )
    logger.info("Found %s unreconciled transactions", len(transactions))
    return {
        "total_unreconciled": len(transactions),
        "total_amount_cents": sum(t.total_amount_cents for t in transactions),
        "total_paid_cents": sum(t.paid_amount_cents for t in transactions),
        "transactions": transactions,
    }
