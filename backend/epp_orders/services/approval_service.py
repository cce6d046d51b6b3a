# Overview: Approval processing; advances or terminates an order's approval lifecycle.

"""
Approval Processing

================================================================================
PURPOSE: Decide one approval level and carry the order along with it
================================================================================

DECISIONS:
    REJECTED:
        - order -> REJECTED (rejected_at, rejected_by, rejection_reason)
        - if the order had already been APPROVED, its stock is restored first
        - remaining PENDING approvals are left alone; the order is closed, so
          processing them raises OrderClosedError
        - employee is emailed

    APPROVED:
        - all required levels approved?
            yes -> validate stock
                   short:  this approval is reopened (PENDING) with a comment,
                           the shortage is noted on the order, the reopen is
                           committed and InsufficientStockError is raised
                   enough: order -> APPROVED, stock deducted, in-app
                           notification created, employee emailed
            no  -> the PENDING approval at the next level becomes current and
                   its approver is emailed (nothing happens if there is none)

Required levels = the linked workflow's level count, or the number of approval
rows when no workflow is linked (zero means never complete).

UNIT OF WORK:
All writes of one call are committed together under row locks and version
checks, retried on lock/stale-data conflicts. Emails go out only after the
commit; a failed email is logged and never rolls anything back.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import AlreadyProcessedError, InsufficientStockError, NotFoundError, OrderClosedError
from ..extensions import db, notifier
from ..models import Order, OrderApproval
from ..time_utils import utcnow
from .approval_states import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    ORDER_APPROVED,
    ORDER_PENDING_APPROVAL,
    ORDER_REJECTED,
    transition_approval,
    transition_order,
    validate_decision,
)
from .concurrency import lock_for_update, run_with_retry
from .mail import DeliveryResult
from .notification_service import create_order_approved_notification_locked
from .stock_service import StockShortage, deduct_stock_locked, restore_stock_locked, validate_stock_locked

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Order rejected"
DEFAULT_RESET_COMMENT = "Approval reset by administrator"

# Post-commit notifications
NOTIFY_NONE = None
NOTIFY_REJECTED = "rejected"
NOTIFY_APPROVED = "approved"
NOTIFY_NEXT_LEVEL = "next_level"


@dataclass
class ApprovalOutcome:
    approval: OrderApproval
    order: Order
    notify: str | None = NOTIFY_NONE
    next_approval: OrderApproval | None = None
    approvers_summary: str | None = None
    shortages: list[StockShortage] = field(default_factory=list)
    notification: DeliveryResult | None = None


def _load_for_update(approval_id: int) -> tuple[OrderApproval, Order]:
    approval = lock_for_update(db.session.query(OrderApproval).filter_by(id=approval_id)).first()
    if not approval:
        raise NotFoundError(f"Approval {approval_id} not found")
    order = lock_for_update(db.session.query(Order).filter_by(id=approval.order_id)).first()
    if not order:
        raise NotFoundError(f"Order {approval.order_id} not found for approval {approval_id}")
    return approval, order


def _order_approvals(order_id: int) -> list[OrderApproval]:
    return (
        db.session.query(OrderApproval)
        .filter_by(order_id=order_id)
        .order_by(OrderApproval.approval_level.asc())
        .all()
    )


def approval_progress(order: Order) -> tuple[int, int]:
    """(approved_count, total_required) for an order."""
    approvals = _order_approvals(order.id)
    approved_count = sum(1 for a in approvals if a.status == APPROVAL_APPROVED)
    if order.workflow is not None and order.workflow.levels:
        total_required = len(order.workflow.levels)
    else:
        total_required = len(approvals)
    return approved_count, total_required


def _is_complete(order: Order) -> bool:
    approved_count, total_required = approval_progress(order)
    if total_required == 0:
        logger.warning("Order %s has no approvals and no workflow", order.order_number)
        return False
    logger.info("Order %s: %s/%s approvals completed", order.order_number, approved_count, total_required)
    return approved_count >= total_required


def check_all_approvals_complete(order_id: int) -> bool:
    order = db.session.get(Order, order_id)
    if not order:
        logger.warning("Order %s not found when checking approvals", order_id)
        return False
    return _is_complete(order)


def _approvers_summary(order_id: int) -> str:
    approved = [a for a in _order_approvals(order_id) if a.status == APPROVAL_APPROVED]
    return ", ".join(f"{a.approver_name} ({a.approver_role})" for a in approved)


def _reject(approval: OrderApproval, order: Order, comments: str | None, now) -> ApprovalOutcome:
    was_approved = order.status == ORDER_APPROVED or order.is_fully_approved
    if was_approved:
        restore_stock_locked(order)
        logger.info("Stock restored for order %s after rejection", order.order_number)

    transition_order(order, ORDER_REJECTED)
    order.rejected_at = now
    order.rejected_by = approval.approver_name
    order.rejection_reason = comments or DEFAULT_REJECTION_REASON
    logger.info("Order %s rejected at level %s", order.order_number, approval.approval_level)
    return ApprovalOutcome(approval=approval, order=order, notify=NOTIFY_REJECTED)


def _block_for_stock(approval: OrderApproval, order: Order, shortages: list[StockShortage]) -> ApprovalOutcome:
    logger.error(
        "Cannot approve order %s: insufficient stock for %s item(s)",
        order.order_number,
        len(shortages),
    )
    transition_approval(approval, APPROVAL_PENDING)
    approval.approved_at = None
    approval.comments = "Approval blocked: Insufficient stock. " + ", ".join(
        f"{s.item_name}: Need {s.shortage} more" for s in shortages
    )
    order.notes = "Order cannot be approved due to insufficient stock. " + "; ".join(
        f"{s.item_name}: Available {s.available}, Need {s.requested}" for s in shortages
    )
    return ApprovalOutcome(approval=approval, order=order, shortages=shortages)


def _complete(approval: OrderApproval, order: Order, now) -> ApprovalOutcome:
    if order.status == ORDER_APPROVED:
        # Re-approval after a reset: stock was already deducted and the employee told
        logger.info("Order %s is already approved; nothing further to apply", order.order_number)
        return ApprovalOutcome(approval=approval, order=order)

    shortages = validate_stock_locked(order)
    if shortages:
        return _block_for_stock(approval, order, shortages)

    transition_order(order, ORDER_APPROVED)
    order.is_fully_approved = True
    order.approved_at = now
    deduct_stock_locked(order)
    create_order_approved_notification_locked(order)

    summary = _approvers_summary(order.id)
    logger.info("Order %s fully approved by %s", order.order_number, summary)
    return ApprovalOutcome(approval=approval, order=order, notify=NOTIFY_APPROVED, approvers_summary=summary)


def _advance(approval: OrderApproval, order: Order) -> ApprovalOutcome:
    next_approval = (
        db.session.query(OrderApproval)
        .filter_by(order_id=order.id, approval_level=approval.approval_level + 1, status=APPROVAL_PENDING)
        .first()
    )
    if next_approval is None:
        logger.warning(
            "Approval %s approved, but order %s is not fully approved yet. Waiting for remaining approvals.",
            approval.id,
            order.order_number,
        )
        return ApprovalOutcome(approval=approval, order=order)

    order.current_approval_level = next_approval.approval_level
    return ApprovalOutcome(approval=approval, order=order, notify=NOTIFY_NEXT_LEVEL, next_approval=next_approval)


def process_approval_locked(approval_id: int, decision: str, comments: str | None = None) -> ApprovalOutcome:
    """Apply one decision inside the caller's unit of work (no commit, no email)."""
    decision = validate_decision(decision)
    approval, order = _load_for_update(approval_id)

    if approval.status != APPROVAL_PENDING:
        raise AlreadyProcessedError(approval.id, approval.status)
    if order.status == ORDER_REJECTED:
        raise OrderClosedError(f"Order {order.order_number} is already rejected; approval {approval.id} cannot be processed")

    now = utcnow()
    transition_approval(approval, decision)
    approval.comments = comments
    if decision == APPROVAL_APPROVED:
        approval.approved_at = now
    else:
        approval.rejected_at = now
    db.session.flush()
    logger.info("Approval %s %s for order %s", approval.id, decision.lower(), order.order_number)

    if decision == APPROVAL_REJECTED:
        outcome = _reject(approval, order, comments, now)
    elif _is_complete(order):
        outcome = _complete(approval, order, now)
    else:
        outcome = _advance(approval, order)

    db.session.flush()
    return outcome


def _send_notifications(outcome: ApprovalOutcome) -> DeliveryResult | None:
    order = outcome.order
    approval = outcome.approval
    employee_name = order.employee_name or "Employee"

    if outcome.notify == NOTIFY_REJECTED:
        result = notifier.send_order_rejected(
            to=order.employee_email,
            employee_name=employee_name,
            order_number=order.order_number,
            order_total_cents=order.total_cents,
            rejected_by=order.rejected_by,
            rejected_at=order.rejected_at,
            rejection_reason=order.rejection_reason,
        )
    elif outcome.notify == NOTIFY_APPROVED:
        result = notifier.send_order_approved(
            to=order.employee_email,
            employee_name=employee_name,
            order_number=order.order_number,
            order_total_cents=order.total_cents,
            approved_by=outcome.approvers_summary or "",
            approved_at=order.approved_at,
        )
    elif outcome.notify == NOTIFY_NEXT_LEVEL and outcome.next_approval is not None:
        nxt = outcome.next_approval
        result = notifier.send_next_approval_notification(
            to=nxt.approver_email,
            approver_name=nxt.approver_name,
            employee_name=employee_name,
            order_number=order.order_number,
            order_total_cents=order.total_cents,
            previous_approver=approval.approver_name,
            approval_level=nxt.approval_level,
            approver_role=nxt.approver_role,
        )
    else:
        return None

    if not result.ok:
        logger.error(
            "Notification '%s' for order %s failed: %s",
            outcome.notify,
            order.order_number,
            result.error,
        )
    return result


def process_approval_with_outcome(approval_id: int, decision: str, comments: str | None = None) -> ApprovalOutcome:
    def _op() -> ApprovalOutcome:
        outcome = process_approval_locked(approval_id, decision, comments)
        db.session.commit()
        return outcome

    outcome = run_with_retry(_op)
    if outcome.shortages:
        raise InsufficientStockError(outcome.order.id, outcome.shortages)

    outcome.notification = _send_notifications(outcome)
    return outcome


def process_approval(approval_id: int, decision: str, comments: str | None = None) -> OrderApproval:
    """
    Decide one approval (APPROVED or REJECTED).

    Raises:
        ValidationError: decision is not APPROVED/REJECTED
        NotFoundError: approval or its order is missing
        AlreadyProcessedError: the approval is not PENDING
        OrderClosedError: the order is already REJECTED
        InsufficientStockError: final approval blocked; the approval was reopened
    """
    return process_approval_with_outcome(approval_id, decision, comments).approval


def reset_approval(approval_id: int, *, comments: str | None = None) -> OrderApproval:
    """
    Administrative reopen of an APPROVED approval (APPROVED -> PENDING).

    The order keeps its status; if it was APPROVED, a later rejection of the
    reopened level reverses it and restores stock.
    """
    def _op() -> OrderApproval:
        approval, order = _load_for_update(approval_id)
        if order.status == ORDER_REJECTED:
            raise OrderClosedError(f"Order {order.order_number} is already rejected")
        if approval.status != APPROVAL_APPROVED:
            raise AlreadyProcessedError(approval.id, approval.status)

        transition_approval(approval, APPROVAL_PENDING)
        approval.approved_at = None
        approval.comments = comments or DEFAULT_RESET_COMMENT
        order.current_approval_level = min(approval.approval_level, order.current_approval_level or approval.approval_level)
        db.session.commit()
        logger.warning(
            "Approval %s (level %s) of order %s reset to PENDING",
            approval.id,
            approval.approval_level,
            order.order_number,
        )
        return approval

    return run_with_retry(_op)


def get_order_approvals(order_id: int) -> list[OrderApproval]:
    if not db.session.get(Order, order_id):
        raise NotFoundError(f"Order {order_id} not found")
    return _order_approvals(order_id)


def get_pending_approvals_for_approver(approver_email: str) -> list[OrderApproval]:
    """PENDING approvals assigned to the email on orders that are still open."""
    email = (approver_email or "").strip().lower()
    if not email:
        return []
    return (
        db.session.query(OrderApproval)
        .join(Order, Order.id == OrderApproval.order_id)
        .filter(
            db.func.lower(OrderApproval.approver_email) == email,
            OrderApproval.status == APPROVAL_PENDING,
            Order.status.in_([ORDER_PENDING_APPROVAL, ORDER_APPROVED]),
        )
        .order_by(OrderApproval.created_at.asc(), OrderApproval.id.asc())
        .all()
    )
