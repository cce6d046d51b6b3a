from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Item(db.Model):
    """
    Stock-bearing catalog item that employees can order.

    ELIGIBILITY:
    An item can be put on a new order only when is_active AND is_available AND
    status == 'ACTIVE'. Eligibility is not re-checked at approval time: an order
    placed while the item was eligible is still approved/rejected normally.

    STOCK:
    stock_quantity is mutated only by stock_service (deduct on full approval,
    restore on post-approval rejection). version_id enables optimistic locking
    so two concurrent approvals cannot silently overwrite each other's counts.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_active_available", "is_active", "is_available"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative prices in cents; selling price wins over retail price
    selling_price_cents = db.Column(db.Integer, nullable=True)
    retail_price_cents = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE, DISCONTINUED

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_orderable(self) -> bool:
        return bool(self.is_active and self.is_available and self.status == "ACTIVE")

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "selling_price_cents": self.selling_price_cents,
            "retail_price_cents": self.retail_price_cents,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "is_available": self.is_available,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Audit row for one stock mutation caused by an order.

    (order_id, item_id, direction) is unique: an order's quantity is deducted
    from an item at most once and restored at most once.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("order_id", "item_id", "direction", name="uq_stock_movements_order_item_direction"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, nullable=False, index=True)

    direction = db.Column(db.String(16), nullable=False)  # DEDUCT, RESTORE
    quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "direction": self.direction,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "occurred_at": to_utc_z(self.occurred_at),
        }
