# Overview: Error taxonomy shared by the order approval engine services.

"""
Error classes raised by the services.

State-changing failures (not found, already processed, insufficient stock)
propagate to the caller with structured detail. Side-effect failures (email
delivery) are caught inside the notification sender and never surface here.
Database errors are SQLAlchemy's own and pass through after rollback.
"""

from __future__ import annotations


class OrderEngineError(Exception):
    """Base class for every domain error raised by the engine."""

    code = "ORDER_ENGINE_ERROR"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class ValidationError(OrderEngineError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class NotFoundError(OrderEngineError, LookupError):
    """404-level: referenced order, approval, workflow or installment is missing."""

    code = "NOT_FOUND"


class ConflictError(OrderEngineError):
    """409-level business rule conflict (e.g., approval chain already exists)."""

    code = "CONFLICT"


class ApprovalError(OrderEngineError):
    """Raised for approval lifecycle errors."""

    code = "APPROVAL_ERROR"


class AlreadyProcessedError(ApprovalError):
    """The approval is no longer PENDING and cannot be decided again."""

    code = "ALREADY_PROCESSED"

    def __init__(self, approval_id: int, status: str):
        super().__init__(f"Approval {approval_id} has already been processed (status: {status})")
        self.approval_id = approval_id
        self.status = status


class OrderClosedError(ApprovalError):
    """The order reached a terminal state that no further decision can change."""

    code = "ORDER_CLOSED"


class InvalidTransitionError(ApprovalError):
    """A status change is not in the transition table."""

    code = "INVALID_TRANSITION"

    def __init__(self, machine: str, from_status: str, to_status: str):
        super().__init__(f"Invalid {machine} transition: {from_status} -> {to_status}")
        self.machine = machine
        self.from_status = from_status
        self.to_status = to_status


class InsufficientStockError(OrderEngineError):
    """
    Final approval was blocked because one or more items are short.

    The approval that triggered the check is reopened (PENDING) before this is
    raised, so the caller can retry after restocking.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(self, order_id: int, shortages: list):
        super().__init__(
            f"Cannot approve order {order_id}: insufficient stock for {len(shortages)} item(s)"
        )
        self.order_id = order_id
        self.shortages = list(shortages)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = [
            {
                "field": f"item.{s.item_id}",
                "message": (
                    f"{s.item_name}: Insufficient stock - Available {s.available}, "
                    f"Requested {s.requested}, Shortage: {s.shortage}"
                ),
            }
            for s in self.shortages
        ]
        return data


class NotificationDeliveryError(OrderEngineError):
    """Raised by an email provider; always converted to a failed DeliveryResult."""

    code = "NOTIFICATION_DELIVERY_FAILED"
