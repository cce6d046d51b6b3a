# Overview: In-app notifications; one "order approved" record per order.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Notification, Order
from ..time_utils import to_utc_z
from .approval_states import ORDER_APPROVED
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

CATEGORY_ORDER_APPROVED = "order_approved"


def _existing(source: str, category: str) -> Notification | None:
    return (
        db.session.query(Notification)
        .filter_by(source=source, category=category, is_deleted=False)
        .first()
    )


def create_order_approved_notification_locked(order: Order) -> Notification | None:
    """
    Add the employee's "order approved" notification unless one exists (no commit).

    The (source, category) unique key backs the existence check.
    """
    if not (order.status == ORDER_APPROVED or order.is_fully_approved):
        return None

    source = str(order.id)
    existing = _existing(source, CATEGORY_ORDER_APPROVED)
    if existing:
        logger.debug("Order approved notification already exists for order %s", order.order_number)
        return existing

    notification = Notification(
        source=source,
        category=CATEGORY_ORDER_APPROVED,
        title=f"Order {order.order_number} approved",
        description=f"Your order {order.order_number} has been approved.",
        recipient_id=order.employee_id,
        payload={
            "order_id": order.id,
            "order_number": order.order_number,
            "total_cents": order.total_cents,
            "approved_at": to_utc_z(order.approved_at),
        },
    )
    db.session.add(notification)
    db.session.flush()
    logger.info("Created order approved notification for order %s", order.order_number)
    return notification


def create_order_approved_notification_if_needed(order_id: int) -> Notification | None:
    def _op() -> Notification | None:
        order = db.session.get(Order, order_id)
        if not order:
            return None
        notification = create_order_approved_notification_locked(order)
        db.session.commit()
        return notification

    return run_with_retry(_op)


def list_notifications(recipient_id: str, *, include_read: bool = True) -> list[Notification]:
    query = db.session.query(Notification).filter_by(recipient_id=recipient_id, is_deleted=False)
    if not include_read:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()
