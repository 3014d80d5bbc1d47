# backend/storefront/services/products_service.py
"""
Catalog service.

Public callers only ever see active products. Products are never deleted:
DELETE archives them so order history keeps a valid product reference.
Stock is not editable through create/update beyond the initial count; later
changes go through adjust_product_stock() and the guarded stock primitive.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from ..models.catalog import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_ARCHIVED, slugify
from ..pagination import paginate
from . import stock_service
from .concurrency import run_with_retry


SORT_OPTIONS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "oldest": (Product.created_at.asc(), Product.id.asc()),
    "price_asc": (Product.price_cents.asc(), Product.id.asc()),
    "price_desc": (Product.price_cents.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}

STOCK_OPERATIONS = ("add", "remove")


def list_products(
    *,
    search: str | None = None,
    category: str | None = None,
    status: str | None = None,
    min_price_cents: int | None = None,
    max_price_cents: int | None = None,
    in_stock: bool = False,
    sort: str = "newest",
    page: int = 1,
    per_page: int = 12,
    include_unpublished: bool = False,
) -> dict:
    if sort not in SORT_OPTIONS:
        raise ValidationError("Invalid sort", details={"sort": sort, "allowed": sorted(SORT_OPTIONS)})

    query = db.session.query(Product)

    if include_unpublished:
        if status:
            query = query.filter(Product.status == status)
    else:
        query = query.filter(Product.status == PRODUCT_STATUS_ACTIVE)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if category:
        query = query.filter(Product.category == category)
    if min_price_cents is not None:
        query = query.filter(Product.price_cents >= min_price_cents)
    if max_price_cents is not None:
        query = query.filter(Product.price_cents <= max_price_cents)
    if in_stock:
        query = query.filter(Product.stock > 0)

    query = query.order_by(*SORT_OPTIONS[sort])
    return paginate(query, page, per_page, lambda p: p.to_dict())


def get_product(product_id: int, *, include_unpublished: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (not include_unpublished and product.status != PRODUCT_STATUS_ACTIVE):
        raise NotFoundError("Product not found")
    return product


def create_product(*, patch: dict, actor_user_id: int | None = None) -> Product:
    """Create from a validated patch (see validation.PRODUCT_POLICY)."""
    product = Product(
        name=patch["name"],
        slug=slugify(patch["name"]),
        description=patch["description"],
        price_cents=patch["price_cents"],
        category=patch["category"],
        images=patch["images"],
        colors=patch["colors"],
        stock=patch.get("stock", 0),
        stock_threshold=patch.get("stock_threshold", 0),
        status=patch.get("status", PRODUCT_STATUS_ACTIVE),
        created_by_user_id=actor_user_id,
    )
    db.session.add(product)
    db.session.flush()
    if product.stock:
        stock_service.record_movement(
            product.id,
            product.stock,
            stock_service.MOVEMENT_ADJUSTMENT,
            actor_user_id=actor_user_id,
            note="Initial stock",
        )
    db.session.commit()
    return product


def update_product(product_id: int, *, patch: dict) -> Product:
    """Apply a validated partial update. Concurrent stock changes trigger a retry."""
    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        for key, value in patch.items():
            setattr(product, key, value)
        if "name" in patch:
            product.slug = slugify(patch["name"])
        db.session.commit()
        return product

    return run_with_retry(_op)


def archive_product(product_id: int) -> Product:
    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        product.status = PRODUCT_STATUS_ARCHIVED
        db.session.commit()
        return product

    return run_with_retry(_op)


def adjust_product_stock(
    product_id: int,
    *,
    operation: str,
    quantity: int,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> Product:
    """Admin stock change through the guarded primitive."""
    if operation not in STOCK_OPERATIONS:
        raise ValidationError("operation must be 'add' or 'remove'")
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")

    def _op():
        if db.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found")

        delta = quantity if operation == "add" else -quantity
        movement = stock_service.apply_stock_change(
            product_id,
            delta,
            stock_service.MOVEMENT_ADJUSTMENT,
            actor_user_id=actor_user_id,
            note=note or f"Manual {operation}",
        )
        if movement is None:
            raise InsufficientStockError(
                "Cannot remove more stock than available",
                details={
                    "product_id": product_id,
                    "requested_quantity": quantity,
                    "available": stock_service.current_stock(product_id),
                },
            )
        db.session.commit()
        return db.session.get(Product, product_id)

    return run_with_retry(_op)


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.status != PRODUCT_STATUS_ARCHIVED,
            Product.stock <= Product.stock_threshold,
        )
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )
