# Overview: Stock validation, deduction, and restoration for an order's items.

"""
Stock Ledger

Stock moves only when an order's approval outcome says so:
- deduct on the transition to APPROVED
- restore when an APPROVED order is rejected

RULES:
1. Each (order, item, direction) is applied at most once; a StockMovement row
   records it and a second call for the same direction is a no-op.
2. Restore only returns stock that a recorded deduction took out.
3. Deduction never drives stock below zero.
4. Items that no longer exist are skipped with a warning.
5. Item rows are locked in ascending id order and carry a version column, so
   concurrent approvals cannot lose updates.

The *_locked variants run inside the caller's unit of work and never commit;
the public functions wrap them in their own retried unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict

from ..errors import NotFoundError
from ..extensions import db
from ..models import Item, Order, StockMovement
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

DIRECTION_DEDUCT = "DEDUCT"
DIRECTION_RESTORE = "RESTORE"


@dataclass(frozen=True)
class StockShortage:
    item_id: int
    item_name: str
    requested: int
    available: int
    shortage: int

    def to_dict(self) -> dict:
        return asdict(self)


def _get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _requested_quantities(order: Order) -> dict[int, int]:
    """Quantity per item id; an item listed on several lines is summed."""
    quantities: dict[int, int] = {}
    for line in order.lines:
        quantities[line.item_id] = quantities.get(line.item_id, 0) + int(line.quantity)
    return quantities


def _load_items(item_ids, *, for_update: bool) -> dict[int, Item]:
    if not item_ids:
        return {}
    query = db.session.query(Item).filter(Item.id.in_(sorted(item_ids))).order_by(Item.id.asc())
    if for_update:
        query = lock_for_update(query)
    return {item.id: item for item in query.all()}


def validate_stock_locked(order: Order, *, for_update: bool = True) -> list[StockShortage]:
    quantities = _requested_quantities(order)
    items = _load_items(quantities.keys(), for_update=for_update)

    shortages: list[StockShortage] = []
    for item_id, requested in quantities.items():
        item = items.get(item_id)
        if item is None:
            logger.warning("Item %s not found for order %s", item_id, order.id)
            continue
        available = int(item.stock_quantity or 0)
        if available < requested:
            shortage = StockShortage(
                item_id=item_id,
                item_name=item.name or "Unknown Item",
                requested=requested,
                available=available,
                shortage=requested - available,
            )
            shortages.append(shortage)
            logger.warning(
                "Insufficient stock for item %s (%s): available %s, requested %s, shortage %s",
                item_id,
                shortage.item_name,
                available,
                requested,
                shortage.shortage,
            )

    if shortages:
        logger.warning("Order %s has %s items with insufficient stock", order.id, len(shortages))
    return shortages


def validate_stock_for_order(order_id: int) -> list[StockShortage]:
    """Items of the order that are short; empty means the order can be fulfilled. Read-only."""
    order = _get_order(order_id)
    return validate_stock_locked(order, for_update=False)


def _recorded_directions(order_id: int) -> dict[tuple[int, str], StockMovement]:
    movements = db.session.query(StockMovement).filter_by(order_id=order_id).all()
    return {(m.item_id, m.direction): m for m in movements}


def _apply(order: Order, direction: str) -> list[StockMovement]:
    quantities = _requested_quantities(order)
    if not quantities:
        logger.warning("Order %s has no items", order.id)
        return []

    recorded = _recorded_directions(order.id)
    items = _load_items(quantities.keys(), for_update=True)

    movements: list[StockMovement] = []
    for item_id in sorted(quantities):
        quantity = quantities[item_id]
        item = items.get(item_id)
        if item is None:
            logger.warning("Item %s not found for order %s", item_id, order.id)
            continue
        if (item_id, direction) in recorded:
            logger.info("Stock %s already applied for item %s on order %s", direction.lower(), item_id, order.id)
            continue

        before = int(item.stock_quantity or 0)
        if direction == DIRECTION_DEDUCT:
            after = max(0, before - quantity)
        else:
            deducted = recorded.get((item_id, DIRECTION_DEDUCT))
            if deducted is None:
                logger.warning("No deduction recorded for item %s on order %s; nothing to restore", item_id, order.id)
                continue
            # A deduction clamped at zero took out less than the line quantity
            quantity = deducted.stock_before - deducted.stock_after
            after = before + quantity

        item.stock_quantity = after
        movement = StockMovement(
            order_id=order.id,
            item_id=item_id,
            direction=direction,
            quantity=quantity,
            stock_before=before,
            stock_after=after,
        )
        db.session.add(movement)
        movements.append(movement)
        logger.info(
            "Stock %s for item %s (%s): %s -> %s (quantity: %s)",
            "deducted" if direction == DIRECTION_DEDUCT else "restored",
            item_id,
            item.name,
            before,
            after,
            quantity,
        )

    db.session.flush()
    return movements


def deduct_stock_locked(order: Order) -> list[StockMovement]:
    movements = _apply(order, DIRECTION_DEDUCT)
    logger.info("Stock deducted for all items in order %s", order.id)
    return movements


def restore_stock_locked(order: Order) -> list[StockMovement]:
    movements = _apply(order, DIRECTION_RESTORE)
    logger.info("Stock restored for all items in order %s", order.id)
    return movements


def deduct_stock_for_order(order_id: int) -> list[StockMovement]:
    def _op() -> list[StockMovement]:
        movements = deduct_stock_locked(_get_order(order_id))
        db.session.commit()
        return movements

    return run_with_retry(_op)


def restore_stock_for_order(order_id: int) -> list[StockMovement]:
    def _op() -> list[StockMovement]:
        movements = restore_stock_locked(_get_order(order_id))
        db.session.commit()
        return movements

    return run_with_retry(_op)
