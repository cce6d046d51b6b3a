from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notification shown to an employee.

    (source, category) is unique: source is the order id, so each order gets at
    most one notification per category (e.g. 'order_approved').
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.UniqueConstraint("source", "category", name="uq_notifications_source_category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.String(64), nullable=False, index=True)
    category = db.Column(db.String(64), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    recipient_id = db.Column(db.String(64), nullable=False, index=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    payload = db.Column(db.JSON, nullable=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "recipient_id": self.recipient_id,
            "is_read": self.is_read,
            "payload": self.payload,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
        }
