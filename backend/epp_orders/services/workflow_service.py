# Overview: Approval workflow matching and administration (bounds, levels, activation).

"""
Workflow Matching

An order is routed to the first ACTIVE workflow (ascending id, i.e. creation
order) whose conditions all hold:

    not requires_installment or payment_type == INSTALLMENT
    min_order_amount_cents is None or total >= min_order_amount_cents
    max_order_amount_cents is None or total <= max_order_amount_cents

Bounds are inclusive. No match is not an error: the order is created without
an approval chain and stays unrouted.

Level numbers of a workflow are kept dense (1..n) so the approval chain built
from it can walk level by level. Levels are frozen once any order references
the workflow: the required approval count of those orders comes from it.
"""

from __future__ import annotations

import logging

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ApprovalWorkflow, Order, WorkflowApprovalLevel
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

PAYMENT_TYPE_INSTALLMENT = "INSTALLMENT"

VALID_ROLES = {"MANAGER", "HR", "FINANCE", "DEPARTMENT_HEAD", "ADMIN"}


def list_active_workflows() -> list[ApprovalWorkflow]:
    return (
        db.session.query(ApprovalWorkflow)
        .filter(ApprovalWorkflow.is_active.is_(True))
        .order_by(ApprovalWorkflow.id.asc())
        .all()
    )


def workflow_matches(workflow: ApprovalWorkflow, order_total_cents: int, payment_type: str) -> bool:
    if workflow.requires_installment and payment_type != PAYMENT_TYPE_INSTALLMENT:
        logger.debug(
            "Workflow %r requires INSTALLMENT but payment type is %s",
            workflow.name,
            payment_type,
        )
        return False

    if workflow.min_order_amount_cents is not None and order_total_cents < workflow.min_order_amount_cents:
        logger.debug(
            "Workflow %r requires min %s but order total is %s",
            workflow.name,
            workflow.min_order_amount_cents,
            order_total_cents,
        )
        return False

    if workflow.max_order_amount_cents is not None and order_total_cents > workflow.max_order_amount_cents:
        logger.debug(
            "Workflow %r allows max %s but order total is %s",
            workflow.name,
            workflow.max_order_amount_cents,
            order_total_cents,
        )
        return False

    return True


def find_matching_workflow(order_total_cents: int, payment_type: str) -> ApprovalWorkflow | None:
    workflows = list_active_workflows()
    logger.info(
        "Searching for matching workflow: order total=%s, payment type=%s, active workflows=%s",
        order_total_cents,
        payment_type,
        len(workflows),
    )

    for workflow in workflows:
        logger.debug(
            "Checking workflow %r: requires_installment=%s min=%s max=%s levels=%s",
            workflow.name,
            workflow.requires_installment,
            workflow.min_order_amount_cents,
            workflow.max_order_amount_cents,
            len(workflow.levels),
        )
        if workflow_matches(workflow, order_total_cents, payment_type):
            logger.info(
                "Matched workflow %r (%s) for order total %s, payment type %s, approval levels %s",
                workflow.name,
                workflow.id,
                order_total_cents,
                payment_type,
                len(workflow.levels),
            )
            return workflow

    logger.warning("No matching workflow found for order total: %s", order_total_cents)
    return None


def get_workflow(workflow_id: int) -> ApprovalWorkflow:
    workflow = db.session.get(ApprovalWorkflow, workflow_id)
    if not workflow:
        raise NotFoundError(f"Workflow {workflow_id} not found")
    return workflow


def _validate_bounds(min_cents: int | None, max_cents: int | None) -> None:
    if min_cents is not None and min_cents < 0:
        raise ValidationError("min_order_amount_cents must be >= 0")
    if max_cents is not None and max_cents < 0:
        raise ValidationError("max_order_amount_cents must be >= 0")
    if min_cents is not None and max_cents is not None and min_cents > max_cents:
        raise ValidationError("min_order_amount_cents cannot exceed max_order_amount_cents")


def _validate_role(role: str) -> str:
    normalized = (role or "").strip().upper()
    if normalized not in VALID_ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(sorted(VALID_ROLES))}")
    return normalized


def _build_level(level: int, role: str, approver_id=None, approver_name=None, approver_email=None) -> WorkflowApprovalLevel:
    if approver_email is not None and "@" not in approver_email:
        raise ValidationError(f"Invalid approver email: {approver_email!r}")
    return WorkflowApprovalLevel(
        level=level,
        role=_validate_role(role),
        approver_id=approver_id,
        approver_name=approver_name,
        approver_email=approver_email,
    )


def create_workflow(
    name: str,
    *,
    description: str | None = None,
    min_order_amount_cents: int | None = None,
    max_order_amount_cents: int | None = None,
    requires_installment: bool = False,
    levels: list[dict] | None = None,
    is_active: bool = True,
) -> ApprovalWorkflow:
    """
    Create a workflow with its levels.

    levels: [{"role": "MANAGER", "approver_email": "...", ...}, ...] in level
    order; level numbers are assigned 1..n.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    _validate_bounds(min_order_amount_cents, max_order_amount_cents)

    def _op() -> ApprovalWorkflow:
        if db.session.query(ApprovalWorkflow.id).filter_by(name=name).first():
            raise ConflictError(f"Workflow {name!r} already exists")

        workflow = ApprovalWorkflow(
            name=name,
            description=description,
            is_active=is_active,
            min_order_amount_cents=min_order_amount_cents,
            max_order_amount_cents=max_order_amount_cents,
            requires_installment=bool(requires_installment),
        )
        for number, entry in enumerate(levels or [], start=1):
            workflow.levels.append(
                _build_level(
                    number,
                    entry.get("role"),
                    entry.get("approver_id"),
                    entry.get("approver_name"),
                    entry.get("approver_email"),
                )
            )
        db.session.add(workflow)
        db.session.commit()
        logger.info("Created workflow %r (%s) with %s levels", workflow.name, workflow.id, len(workflow.levels))
        return workflow

    return run_with_retry(_op)


def _ensure_levels_editable(workflow: ApprovalWorkflow) -> None:
    in_use = db.session.query(Order.id).filter_by(workflow_id=workflow.id).first()
    if in_use is not None:
        raise ConflictError(
            f"Workflow {workflow.name!r} is referenced by orders; its levels cannot be changed"
        )


def add_workflow_level(
    workflow_id: int,
    level: int,
    role: str,
    approver_id: str | None = None,
    approver_name: str | None = None,
    approver_email: str | None = None,
) -> WorkflowApprovalLevel:
    """Append a level; level must be the next number (len(levels) + 1)."""
    def _op() -> WorkflowApprovalLevel:
        workflow = lock_for_update(db.session.query(ApprovalWorkflow).filter_by(id=workflow_id)).first()
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        _ensure_levels_editable(workflow)

        expected = len(workflow.levels) + 1
        if level != expected:
            raise ValidationError(f"Level must be {expected} (levels are numbered 1..n without gaps)")

        new_level = _build_level(level, role, approver_id, approver_name, approver_email)
        workflow.levels.append(new_level)
        db.session.commit()
        logger.info("Added level %s (%s) to workflow %r", level, new_level.role, workflow.name)
        return new_level

    return run_with_retry(_op)


def deactivate_workflow(workflow_id: int) -> ApprovalWorkflow:
    """Stop matching new orders; existing orders keep their chain."""
    def _op() -> ApprovalWorkflow:
        workflow = lock_for_update(db.session.query(ApprovalWorkflow).filter_by(id=workflow_id)).first()
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        workflow.is_active = False
        db.session.commit()
        logger.info("Deactivated workflow %r (%s)", workflow.name, workflow.id)
        return workflow

    return run_with_retry(_op)
