from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


# Order lifecycle statuses
ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_RETURNED = "returned"
# Side-channel statuses, only set by payment reconciliation
ORDER_PAYMENT_FAILED = "payment_failed"
ORDER_REFUNDED = "refunded"

MANUAL_ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_RETURNED,
)
ORDER_STATUSES = MANUAL_ORDER_STATUSES + (ORDER_PAYMENT_FAILED, ORDER_REFUNDED)

# Statuses whose stock has been handed back to the catalog
STOCK_RELEASING_STATUSES = frozenset({ORDER_CANCELLED, ORDER_RETURNED})

PAYMENT_METHOD_COD = "cod"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHODS = (PAYMENT_METHOD_COD, PAYMENT_METHOD_CARD)

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_REFUNDED, PAYMENT_CANCELLED)

SHIPPING_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "address",
    "city",
    "state",
    "postal_code",
    "phone",
    "email",
)


class Order(db.Model):
    """
    One checkout transaction.

    Line items carry name/price/image snapshots taken at creation time and
    never follow later catalog edits.

    stock_held is True while the order's quantities are deducted from
    product stock. Reconciliation flips it, which is what makes a repeated
    cancel/return a no-op for inventory.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_nonnegative"),
        db.CheckConstraint("shipping_fee_cents >= 0", name="ck_orders_shipping_nonnegative"),
        db.CheckConstraint("total_cents >= 0", name="ck_orders_total_nonnegative"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    shipping_address = db.Column(db.JSON, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    card_last4 = db.Column(db.String(4), nullable=True)
    payment_transaction_id = db.Column(db.String(128), nullable=True, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_error = db.Column(db.String(255), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    stock_held = db.Column(db.Boolean, nullable=False, default=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_fee_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    tracking_carrier = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)

    notes = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def recipient_email(self) -> str | None:
        address = self.shipping_address or {}
        if address.get("email"):
            return address["email"]
        return self.user.email if self.user else None

    @property
    def tracking_info(self) -> dict | None:
        if not (self.tracking_carrier or self.tracking_number or self.tracking_url):
            return None
        return {
            "carrier": self.tracking_carrier,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
        }

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status!r} user_id={self.user_id}>"

    def to_dict(self, include_user: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "shipping_address": dict(self.shipping_address or {}),
            "payment_method": self.payment_method,
            "payment": {
                "status": self.payment_status,
                "card_last4": self.card_last4,
                "transaction_id": self.payment_transaction_id,
                "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
                "error": self.payment_error,
                "refund_amount_cents": self.refund_amount_cents,
                "refund_reason": self.refund_reason,
                "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            },
            "status": self.status,
            "stock_held": self.stock_held,
            "subtotal_cents": self.subtotal_cents,
            "shipping_fee_cents": self.shipping_fee_cents,
            "total_cents": self.total_cents,
            "tracking_info": self.tracking_info,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_user and self.user:
            data["user"] = {
                "id": self.user.id,
                "first_name": self.user.first_name,
                "last_name": self.user.last_name,
                "email": self.user.email,
            }
        return data


class OrderItem(db.Model):
    """Line item with purchase-time snapshot of the product."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    image = db.Column(db.String(512), nullable=True)
    color = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "image": self.image,
            "color": self.color,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }
