from __future__ import annotations

import re

from ..extensions import db
from storefront.time_utils import to_utc_z


PRODUCT_CATEGORIES = ("Wallets", "Cardholders")

PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_DRAFT = "draft"
PRODUCT_STATUS_ARCHIVED = "archived"
PRODUCT_STATUSES = (PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_DRAFT, PRODUCT_STATUS_ARCHIVED)


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "product"


class Product(db.Model):
    """
    Catalog entry with a mutable stock counter.

    STOCK: `stock` is never written through this mapper after creation.
    All changes go through stock_service.adjust_stock(), which issues a
    conditional UPDATE and bumps version_id so concurrent ORM edits of the
    same row fail with StaleDataError instead of overwriting stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        db.CheckConstraint("stock_threshold >= 0", name="ck_products_threshold_nonnegative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        db.Index("ix_products_status_category", "status", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=False)

    # Authoritative storage in minor units
    price_cents = db.Column(db.Integer, nullable=False)

    category = db.Column(db.String(32), nullable=False, index=True)
    images = db.Column(db.JSON, nullable=False, default=list)
    colors = db.Column(db.JSON, nullable=False, default=list)

    stock = db.Column(db.Integer, nullable=False, default=0)
    stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
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
    def is_low_stock(self) -> bool:
        return self.stock <= self.stock_threshold

    @property
    def primary_image(self) -> str | None:
        return self.images[0] if self.images else None

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "price_cents": self.price_cents,
            "category": self.category,
            "images": list(self.images or []),
            "colors": list(self.colors or []),
            "stock": self.stock,
            "stock_threshold": self.stock_threshold,
            "is_low_stock": self.is_low_stock,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock mutation.

    Written in the same DB transaction as the stock UPDATE it describes.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # ORDER_PLACED, ORDER_RELEASED, ORDER_REHELD, ADJUSTMENT
    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "order_id": self.order_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
