# Overview: Order creation; totals, ledger, installments, and approval chain in one unit of work.

"""
Order Creation

Steps (single commit):
1. Reserve an order number from the day's counter
2. Price the lines (explicit unit price, else item selling price, else retail
   price) and compute subtotal / discount / tax / total in cents
3. Insert the order (PENDING_APPROVAL) and its lines
4. Create the payment ledger row
5. INSTALLMENT orders: generate the payroll installment schedule
   (DEFAULT_INSTALLMENT_MONTHS when no plan length is given)
6. Build the approval chain from the matching workflow (none -> unrouted)

The first approver is emailed after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Installment, Item, Order, OrderLine, Transaction
from ..time_utils import as_date
from .approval_chain_service import ApprovalChain, create_approval_chain_locked, notify_first_approver
from .approval_states import ORDER_PENDING_APPROVAL
from .approver_resolution import ApproverResolver
from .concurrency import run_with_retry
from .installment_service import generate_installments_inner
from .mail import DeliveryResult
from .order_number_service import allocate_order_number_in_session
from .transaction_service import create_transaction_for_order_inner

logger = logging.getLogger(__name__)

PAYMENT_TYPE_CASH = "CASH"
PAYMENT_TYPE_INSTALLMENT = "INSTALLMENT"
PAYMENT_TYPE_POINTS = "POINTS"
PAYMENT_TYPE_MIXED = "MIXED"
VALID_PAYMENT_TYPES = {PAYMENT_TYPE_CASH, PAYMENT_TYPE_INSTALLMENT, PAYMENT_TYPE_POINTS, PAYMENT_TYPE_MIXED}

DEFAULT_PAYMENT_METHOD = "PAYROLL_DEDUCTION"


@dataclass
class PricedLine:
    item_id: int
    quantity: int
    unit_price_cents: int
    discount_cents: int
    subtotal_cents: int


@dataclass
class OrderTotals:
    lines: list[PricedLine]
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int


@dataclass
class OrderCreationResult:
    order: Order
    transaction: Transaction
    installments: list[Installment] = field(default_factory=list)
    approval_chain: ApprovalChain | None = None
    notification: DeliveryResult | None = None

    @property
    def is_routed(self) -> bool:
        return self.approval_chain is not None


def _line_value(line, key: str, default=None):
    if isinstance(line, dict):
        return line.get(key, default)
    return getattr(line, key, default)


def _as_int(value, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")


def calculate_order_totals(lines, tax_rate_bps: int | None = None) -> OrderTotals:
    """
    Price order lines; amounts in cents.

    line subtotal = max(0, quantity * unit_price - discount)
    tax = subtotal * tax_rate_bps / 10000 (half-up)
    """
    if not lines:
        raise ValidationError("Order must contain at least one line")
    if tax_rate_bps is None:
        tax_rate_bps = int(current_app.config.get("DEFAULT_TAX_RATE_BPS", 1000))
    if tax_rate_bps < 0:
        raise ValidationError("tax_rate_bps must be >= 0")

    priced: list[PricedLine] = []
    subtotal = 0
    discount_total = 0

    for line in lines:
        item_id = _as_int(_line_value(line, "item_id"), "item_id")
        quantity = _as_int(_line_value(line, "quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError(f"quantity must be positive for item {item_id}")
        discount = _as_int(_line_value(line, "discount_cents", 0) or 0, "discount_cents")
        if discount < 0:
            raise ValidationError(f"discount_cents must be >= 0 for item {item_id}")

        item = db.session.get(Item, item_id)
        if item is None:
            raise ValidationError(f"Item not found with id: {item_id}")
        if not item.is_orderable:
            raise ValidationError(f"Item {item_id} ({item.name}) is not available for ordering")

        unit_price = _line_value(line, "unit_price_cents")
        if not unit_price:
            unit_price = item.selling_price_cents or item.retail_price_cents or 0
            if unit_price == 0:
                raise ValidationError(f"Item {item_id} has no valid price (selling or retail)")
            logger.debug(
                "Fetched price from item %s: %s (selling %s, retail %s)",
                item_id,
                unit_price,
                item.selling_price_cents,
                item.retail_price_cents,
            )
        unit_price = _as_int(unit_price, "unit_price_cents")
        if unit_price < 0:
            raise ValidationError(f"unit_price_cents must be >= 0 for item {item_id}")

        line_subtotal = max(0, quantity * unit_price - discount)
        priced.append(PricedLine(item_id, quantity, unit_price, discount, line_subtotal))
        subtotal += line_subtotal
        discount_total += discount

    tax = (subtotal * tax_rate_bps + 5000) // 10000
    totals = OrderTotals(
        lines=priced,
        subtotal_cents=subtotal,
        discount_cents=discount_total,
        tax_cents=tax,
        total_cents=subtotal + tax,
    )
    logger.info(
        "Calculated order totals: subtotal=%s, discount=%s, tax=%s, total=%s",
        totals.subtotal_cents,
        totals.discount_cents,
        totals.tax_cents,
        totals.total_cents,
    )
    return totals


def create_order(
    employee_id: str,
    lines,
    *,
    employee_name: str | None = None,
    employee_email: str | None = None,
    payment_type: str = PAYMENT_TYPE_INSTALLMENT,
    installment_months: int | None = None,
    payment_method: str = DEFAULT_PAYMENT_METHOD,
    order_date=None,
    notes: str | None = None,
    resolver: ApproverResolver | None = None,
) -> OrderCreationResult:
    if not employee_id:
        raise ValidationError("employee_id is required")
    payment_type = (payment_type or "").strip().upper()
    if payment_type not in VALID_PAYMENT_TYPES:
        raise ValidationError(
            f"Invalid payment type '{payment_type}'. Must be one of: {', '.join(sorted(VALID_PAYMENT_TYPES))}"
        )
    if installment_months is not None and int(installment_months) < 1:
        raise ValidationError("installment_months must be >= 1")

    day = as_date(order_date)

    def _op() -> OrderCreationResult:
        order_number = allocate_order_number_in_session(day)
        totals = calculate_order_totals(lines)

        order = Order(
            order_number=order_number,
            employee_id=employee_id,
            employee_name=employee_name,
            employee_email=employee_email,
            status=ORDER_PENDING_APPROVAL,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            payment_type=payment_type,
            payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
            order_date=day,
            notes=notes,
        )
        for priced in totals.lines:
            order.lines.append(
                OrderLine(
                    item_id=priced.item_id,
                    quantity=priced.quantity,
                    unit_price_cents=priced.unit_price_cents,
                    discount_cents=priced.discount_cents,
                    subtotal_cents=priced.subtotal_cents,
                )
            )
        db.session.add(order)
        db.session.flush()
        logger.info("Created order %s (%s) for employee %s", order.order_number, order.id, employee_id)

        transaction = create_transaction_for_order_inner(
            order.id, employee_id, order.total_cents, payment_type, order.payment_method
        )

        installments: list[Installment] = []
        if payment_type == PAYMENT_TYPE_INSTALLMENT:
            months = int(installment_months or current_app.config.get("DEFAULT_INSTALLMENT_MONTHS", 6))
            installments = generate_installments_inner(order.id, months, order.total_cents, day)
            order.installment_months = months
            order.installment_count = len(installments)
            order.installment_amount_cents = installments[0].amount_cents if installments else 0

        chain = create_approval_chain_locked(
            order,
            order_total_cents=order.total_cents,
            payment_type=payment_type,
            employee_id=employee_id,
            resolver=resolver,
        )
        if chain is None:
            logger.warning("Order %s has no approval chain; it stays unrouted", order.order_number)

        db.session.commit()
        return OrderCreationResult(order=order, transaction=transaction, installments=installments, approval_chain=chain)

    result = run_with_retry(_op)

    if result.approval_chain is not None:
        result.notification = notify_first_approver(
            result.approval_chain,
            employee_name=employee_name,
            order_number=result.order.order_number,
            order_total_cents=result.order.total_cents,
            order_date=result.order.order_date,
            notes=notes,
            installments=result.installments,
        )
    return result


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order
