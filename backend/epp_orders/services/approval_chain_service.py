# Overview: Build an order's approval chain from its matching workflow and notify the first approver.

"""
Approval Chain Construction

For the workflow matched by order total and payment type, one PENDING
OrderApproval is created per level (approval_level 1..n). The order keeps a
reference to the workflow (workflow_id), written once.

Approvers come from an ApproverResolver: an email pinned on the workflow level
wins, otherwise the role table is used. A missing or malformed email is logged
and the approval is still created; the approval just cannot be emailed.

Only the level 1 approver is notified, after the chain is committed. A failed
notification is logged and never undoes the chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import ConflictError, NotFoundError
from ..extensions import db, notifier
from ..models import ApprovalWorkflow, Order, OrderApproval
from .approval_states import APPROVAL_PENDING
from .approver_resolution import ApproverResolver, default_resolver
from .concurrency import lock_for_update, run_with_retry
from .mail import DeliveryResult
from .workflow_service import find_matching_workflow

logger = logging.getLogger(__name__)


@dataclass
class ApprovalChain:
    workflow: ApprovalWorkflow
    approvals: list[OrderApproval]
    notification: DeliveryResult | None = None
    order_id: int | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def first_approval(self) -> OrderApproval | None:
        return self.approvals[0] if self.approvals else None


def installment_payload(installments) -> list[dict] | None:
    """Installment rows (or dicts) as plain dicts for notification bodies."""
    if not installments:
        return None
    payload = []
    for inst in installments:
        if isinstance(inst, dict):
            payload.append(inst)
            continue
        payload.append({
            "installment_number": inst.installment_number,
            "amount_cents": inst.amount_cents,
            "cut_off_date": inst.cut_off_date,
            "scheduled_date": inst.scheduled_date,
        })
    return payload


def create_approval_chain_locked(
    order: Order,
    *,
    order_total_cents: int,
    payment_type: str,
    employee_id: str | None = None,
    resolver: ApproverResolver | None = None,
) -> ApprovalChain | None:
    """
    Create the approval rows inside the caller's unit of work (no commit, no email).

    Returns None when no workflow matches or the matched workflow has no levels.
    """
    if order.workflow_id is not None or order.approvals:
        raise ConflictError(f"Order {order.order_number} already has an approval chain")

    workflow = find_matching_workflow(order_total_cents, payment_type)
    if workflow is None:
        logger.warning("No workflow found for order %s", order.order_number)
        return None
    if not workflow.levels:
        logger.warning("Workflow %r has no approval levels", workflow.name)
        return None

    resolver = resolver or default_resolver()
    logger.info("Creating approval chain for order %s with %s levels", order.order_number, len(workflow.levels))

    chain = ApprovalChain(workflow=workflow, approvals=[], order_id=order.id)
    for approval_level, level in enumerate(sorted(workflow.levels, key=lambda lv: lv.level), start=1):
        approver = resolver.resolve(level, employee_id)
        if not approver.has_valid_email:
            message = f"Invalid or missing approver email for level {approval_level}: {approver.email!r}"
            logger.warning(message)
            chain.warnings.append(message)

        approval = OrderApproval(
            order_id=order.id,
            approval_level=approval_level,
            approver_role=level.role,
            approver_id=approver.id,
            approver_name=approver.name,
            approver_email=approver.email,
            status=APPROVAL_PENDING,
        )
        db.session.add(approval)
        chain.approvals.append(approval)
        logger.info(
            "Created approval level %s (%s) for order %s: %s (%s), source %s",
            approval_level,
            level.role,
            order.order_number,
            approver.name,
            approver.email,
            approver.source,
        )

    order.workflow_id = workflow.id
    order.current_approval_level = 1
    db.session.flush()
    logger.info("Saved workflow %s to order %s", workflow.id, order.order_number)
    return chain


def notify_first_approver(
    chain: ApprovalChain,
    *,
    employee_name: str | None,
    order_number: str,
    order_total_cents: int,
    order_date=None,
    notes: str | None = None,
    installments=None,
) -> DeliveryResult | None:
    first = chain.first_approval
    if first is None:
        return None

    result = notifier.send_approval_request(
        to=first.approver_email,
        approver_name=first.approver_name,
        employee_name=employee_name or "Employee",
        order_number=order_number,
        order_total_cents=order_total_cents,
        approval_level=first.approval_level,
        approver_role=first.approver_role,
        order_date=order_date,
        notes=notes,
        installments=installment_payload(installments),
    )
    if result.ok:
        logger.info("Sent approval request to %s for order %s", first.approver_email, order_number)
    else:
        logger.error("Failed to send approval request for order %s: %s", order_number, result.error)
    chain.notification = result
    return result


def create_approval_chain(
    order_id: int,
    *,
    order_number: str,
    employee_id: str,
    employee_name: str | None,
    order_total_cents: int,
    payment_type: str,
    order_date=None,
    notes: str | None = None,
    installments=None,
    resolver: ApproverResolver | None = None,
) -> ApprovalChain | None:
    def _op() -> ApprovalChain | None:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        chain = create_approval_chain_locked(
            order,
            order_total_cents=order_total_cents,
            payment_type=payment_type,
            employee_id=employee_id,
            resolver=resolver,
        )
        db.session.commit()
        return chain

    chain = run_with_retry(_op)
    if chain is not None:
        notify_first_approver(
            chain,
            employee_name=employee_name,
            order_number=order_number,
            order_total_cents=order_total_cents,
            order_date=order_date,
            notes=notes,
            installments=installments,
        )
    return chain
