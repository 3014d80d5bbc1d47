from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class SavedAddress(db.Model):
    """
    Address book entry a customer can reuse at checkout.

    `address` holds the same snake_case fields as an order's shipping
    address. At most one entry per user carries is_default.
    """
    __tablename__ = "saved_addresses"
    __table_args__ = (
        db.Index("ix_saved_addresses_user_default", "user_id", "is_default"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    label = db.Column(db.String(50), nullable=True)
    address = db.Column(db.JSON, nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "address": dict(self.address or {}),
            "is_default": self.is_default,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
