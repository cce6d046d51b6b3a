from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Transaction(db.Model):
    """
    Payment ledger for one order.

    Created alongside the order. paid_amount_cents/balance_cents move only when
    an installment payment is recorded; payment_history is append-only.
    """
    __tablename__ = "transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(64), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    employee_id = db.Column(db.String(64), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, default="PURCHASE")  # PURCHASE, INSTALLMENT
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, PROCESSING, COMPLETED

    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=True)
    payment_history = db.Column(db.JSON, nullable=False, default=list)

    is_reconciled = db.Column(db.Boolean, nullable=False, default=False, index=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_by = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("transaction", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "order_id": self.order_id,
            "employee_id": self.employee_id,
            "type": self.type,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_cents": self.balance_cents,
            "payment_method": self.payment_method,
            "payment_history": list(self.payment_history or []),
            "is_reconciled": self.is_reconciled,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "reconciled_by": self.reconciled_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Installment(db.Model):
    """
    One bi-monthly payroll deduction of an installment order.

    cut_off_date is the payroll boundary (15th or month end); scheduled_date
    is when the deduction is paid out.
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.UniqueConstraint("order_id", "installment_number", name="uq_installments_order_number"),
        db.Index("ix_installments_status_cutoff", "status", "cut_off_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    installment_number = db.Column(db.Integer, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, DEDUCTED, FAILED

    cut_off_date = db.Column(db.Date, nullable=False)
    scheduled_date = db.Column(db.Date, nullable=False)
    deducted_date = db.Column(db.DateTime(timezone=True), nullable=True)

    payroll_batch_id = db.Column(db.String(64), nullable=True)
    deduction_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("installments", lazy=True, order_by="Installment.installment_number"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "installment_number": self.installment_number,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "cut_off_date": to_iso_date(self.cut_off_date),
            "scheduled_date": to_iso_date(self.scheduled_date),
            "deducted_date": to_utc_z(self.deducted_date),
            "payroll_batch_id": self.payroll_batch_id,
            "deduction_reference": self.deduction_reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
