from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


NOTIFICATION_PENDING = "PENDING"
NOTIFICATION_SENT = "SENT"
NOTIFICATION_FAILED = "FAILED"


class Notification(db.Model):
    """
    Outbound customer email, written after the triggering transaction commits.

    dedup_key makes enqueueing idempotent: the same (kind, order, trigger)
    can only ever produce one row, so webhook replays never mail twice.
    Rows stay PENDING until the dispatcher sends them or gives up.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.UniqueConstraint("dedup_key", name="uq_notifications_dedup_key"),
        db.Index("ix_notifications_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=NOTIFICATION_PENDING)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(512), nullable=True)
    dedup_key = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "order_id": self.order_id,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "dedup_key": self.dedup_key,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
        }
