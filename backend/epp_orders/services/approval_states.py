# Overview: Transition tables for order and approval statuses; every status write goes through here.

"""
Approval State Machines

ORDER:
    PENDING_APPROVAL -> APPROVED     (last level approved, stock available)
    PENDING_APPROVAL -> REJECTED     (any level rejected)
    APPROVED         -> REJECTED     (reversal; stock is restored)

APPROVAL (one row per order level):
    PENDING  -> APPROVED
    PENDING  -> REJECTED
    APPROVED -> PENDING              (reopen: stock blocked completion, or admin reset)

REJECTED is terminal for both machines. Re-deciding an already decided
approval is reported as AlreadyProcessedError by the approval service before
the table is consulted.
"""

from __future__ import annotations

from typing import Literal

from ..errors import InvalidTransitionError, ValidationError

ORDER_PENDING_APPROVAL = "PENDING_APPROVAL"
ORDER_APPROVED = "APPROVED"
ORDER_REJECTED = "REJECTED"

APPROVAL_PENDING = "PENDING"
APPROVAL_APPROVED = "APPROVED"
APPROVAL_REJECTED = "REJECTED"

ApprovalDecision = Literal["APPROVED", "REJECTED"]
VALID_DECISIONS = {APPROVAL_APPROVED, APPROVAL_REJECTED}

ORDER_TRANSITIONS: dict[str, set[str]] = {
    ORDER_PENDING_APPROVAL: {ORDER_APPROVED, ORDER_REJECTED},
    ORDER_APPROVED: {ORDER_REJECTED},
    ORDER_REJECTED: set(),
}

APPROVAL_TRANSITIONS: dict[str, set[str]] = {
    APPROVAL_PENDING: {APPROVAL_APPROVED, APPROVAL_REJECTED},
    APPROVAL_APPROVED: {APPROVAL_PENDING},
    APPROVAL_REJECTED: set(),
}

_MACHINES = {
    "order": ORDER_TRANSITIONS,
    "approval": APPROVAL_TRANSITIONS,
}


def validate_decision(decision: str) -> str:
    normalized = (decision or "").strip().upper()
    if normalized not in VALID_DECISIONS:
        raise ValidationError(
            f"Invalid decision '{decision}'. Must be one of: {', '.join(sorted(VALID_DECISIONS))}"
        )
    return normalized


def can_transition(machine: str, from_status: str, to_status: str) -> bool:
    return to_status in _MACHINES[machine].get(from_status, set())


def is_terminal(machine: str, status: str) -> bool:
    return not _MACHINES[machine].get(status)


def _check(machine: str, from_status: str, to_status: str) -> None:
    if not can_transition(machine, from_status, to_status):
        raise InvalidTransitionError(machine, from_status, to_status)


def transition_order(order, to_status: str) -> None:
    """Move an order to to_status or raise InvalidTransitionError."""
    _check("order", order.status, to_status)
    order.status = to_status


def transition_approval(approval, to_status: str) -> None:
    """Move an approval row to to_status or raise InvalidTransitionError."""
    _check("approval", approval.status, to_status)
    approval.status = to_status
