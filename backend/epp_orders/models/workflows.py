from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ApprovalWorkflow(db.Model):
    """
    Approval policy applied to orders whose total and payment type fit its bounds.

    Bounds are inclusive and optional (NULL = unbounded). Orders reference the
    workflow by id; levels must not be edited once orders use the workflow.
    """
    __tablename__ = "approval_workflows"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    min_order_amount_cents = db.Column(db.Integer, nullable=True)
    max_order_amount_cents = db.Column(db.Integer, nullable=True)
    requires_installment = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    levels = db.relationship(
        "WorkflowApprovalLevel",
        backref="workflow",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WorkflowApprovalLevel.level",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow id={self.id} name={self.name!r} levels={len(self.levels)}>"

    def to_dict(self, include_levels: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "min_order_amount_cents": self.min_order_amount_cents,
            "max_order_amount_cents": self.max_order_amount_cents,
            "requires_installment": self.requires_installment,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_levels:
            data["levels"] = [level.to_dict() for level in self.levels]
        return data


class WorkflowApprovalLevel(db.Model):
    """
    One stage of a workflow.

    approver_email, when set, pins the approver for this level; otherwise the
    approver is resolved from the role.
    """
    __tablename__ = "workflow_approval_levels"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "level", name="uq_workflow_levels_workflow_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(db.Integer, db.ForeignKey("approval_workflows.id"), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False)
    role = db.Column(db.String(32), nullable=False)  # MANAGER, HR, FINANCE, DEPARTMENT_HEAD, ADMIN

    approver_id = db.Column(db.String(64), nullable=True)
    approver_name = db.Column(db.String(255), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "level": self.level,
            "role": self.role,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
        }


class OrderApproval(db.Model):
    """
    One approval step of one order (the approval chain is the set of these rows).

    approval_level is 1..n, dense, unique per order. status moves PENDING ->
    APPROVED | REJECTED exactly once; the only way back to PENDING is a reopen
    (stock shortage at final approval, or an administrative reset).
    """
    __tablename__ = "order_approvals"
    __table_args__ = (
        db.UniqueConstraint("order_id", "approval_level", name="uq_order_approvals_order_level"),
        db.Index("ix_order_approvals_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    approval_level = db.Column(db.Integer, nullable=False)
    approver_role = db.Column(db.String(32), nullable=False)
    approver_id = db.Column(db.String(64), nullable=True)
    approver_name = db.Column(db.String(255), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comments = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("approvals", lazy=True, order_by="OrderApproval.approval_level"))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<OrderApproval id={self.id} order_id={self.order_id} level={self.approval_level} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "approval_level": self.approval_level,
            "approver_role": self.approver_role,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
            "status": self.status,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "comments": self.comments,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
