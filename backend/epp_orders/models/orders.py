from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Order(db.Model):
    """
    Employee purchase order.

    LIFECYCLE:
    Created PENDING_APPROVAL; moved to APPROVED or REJECTED by approval_service
    only (see approval_states for the transition table).

    workflow_id is written once, when the approval chain is created. Orders
    without a matching workflow keep it NULL and stay unrouted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_employee_status", "employee_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    employee_id = db.Column(db.String(64), nullable=False, index=True)
    employee_name = db.Column(db.String(255), nullable=True)
    employee_email = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="PENDING_APPROVAL", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_type = db.Column(db.String(16), nullable=False, default="INSTALLMENT")  # CASH, INSTALLMENT, POINTS, MIXED
    payment_method = db.Column(db.String(32), nullable=False, default="PAYROLL_DEDUCTION")
    installment_months = db.Column(db.Integer, nullable=True)
    installment_count = db.Column(db.Integer, nullable=True)
    installment_amount_cents = db.Column(db.Integer, nullable=True)

    workflow_id = db.Column(db.Integer, db.ForeignKey("approval_workflows.id"), nullable=True, index=True)
    current_approval_level = db.Column(db.Integer, nullable=False, default=1)
    is_fully_approved = db.Column(db.Boolean, nullable=False, default=False)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(255), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    order_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    workflow = db.relationship("ApprovalWorkflow", lazy=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "employee_email": self.employee_email,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_type": self.payment_type,
            "payment_method": self.payment_method,
            "installment_months": self.installment_months,
            "installment_count": self.installment_count,
            "installment_amount_cents": self.installment_amount_cents,
            "workflow_id": self.workflow_id,
            "current_approval_level": self.current_approval_level,
            "is_fully_approved": self.is_fully_approved,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "order_date": to_iso_date(self.order_date),
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Line item owned by an order.

    item_id is a soft reference (no FK): catalog items may be deleted after the
    order is placed, and stock operations skip missing items with a warning.
    """
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class OrderNumberSequence(db.Model):
    """
    Atomic per-day order number counter.

    last_value encodes letter and number as letter_index * 10000 + number
    (A0001 = 1, A9999 = 9999, B0001 = 10001).
    """
    __tablename__ = "order_number_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "sequence_date", name="uq_order_number_sequences_prefix_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    sequence_date = db.Column(db.Date, nullable=False, index=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "sequence_date": to_iso_date(self.sequence_date),
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }
