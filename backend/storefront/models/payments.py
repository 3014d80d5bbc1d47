from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class PaymentEvent(db.Model):
    """
    Payment gateway webhook events that have been applied.

    IDEMPOTENCE: event_id is unique. The row is written in the same
    transaction as the order mutation, so an event is either fully applied
    and recorded, or neither. Replays find the row and stop.
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        db.UniqueConstraint("event_id", name="uq_payment_events_event_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    # Object id from the gateway (payment intent / charge)
    gateway_object_id = db.Column(db.String(128), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("payment_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "order_id": self.order_id,
            "gateway_object_id": self.gateway_object_id,
            "received_at": to_utc_z(self.received_at),
        }
