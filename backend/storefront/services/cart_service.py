# Overview: Per-user cart with snapshot lines and quantity limits.

"""
Cart rules

- One cart per user, created lazily.
- A line is (product, color); adding the same pair again merges quantities
  and refreshes the price snapshot.
- Limits: MAX_LINES distinct lines, MAX_QUANTITY_PER_LINE units per line,
  MAX_TOTAL_QUANTITY units overall. A change that would break a limit is
  rejected before anything is written.
- The cart never reserves stock; availability is re-checked at checkout.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, CartItem, Product
from ..models.catalog import PRODUCT_STATUS_ACTIVE


MAX_LINES = 20
MAX_QUANTITY_PER_LINE = 10
MAX_TOTAL_QUANTITY = 50


def get_or_create_cart(user_id: int) -> Cart:
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is not None:
        return cart
    try:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.commit()
        return cart
    except IntegrityError:
        # Created by a concurrent request
        db.session.rollback()
        return db.session.query(Cart).filter_by(user_id=user_id).one()


def _active_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or product.status != PRODUCT_STATUS_ACTIVE:
        raise NotFoundError("Product not found or is not available")
    return product


def _check_limits(cart: Cart, *, line_key: tuple[int, str], new_quantity: int) -> None:
    lines = {(item.product_id, item.color): item.quantity for item in cart.items}
    lines[line_key] = new_quantity

    if len(lines) > MAX_LINES:
        raise ValidationError(f"Cart cannot contain more than {MAX_LINES} unique items")
    if new_quantity > MAX_QUANTITY_PER_LINE:
        raise ValidationError(f"Cannot add more than {MAX_QUANTITY_PER_LINE} units of a single item")
    if sum(lines.values()) > MAX_TOTAL_QUANTITY:
        raise ValidationError(f"Cart cannot contain more than {MAX_TOTAL_QUANTITY} total items")


def _check_stock(product: Product, quantity: int) -> None:
    if quantity > product.stock:
        raise InsufficientStockError(
            f"Insufficient stock. Available: {product.stock}",
            details={"product_id": product.id, "requested_quantity": quantity, "available": product.stock},
        )


def review_cart(cart: Cart) -> dict:
    """Compare cart lines to the live catalog without changing anything."""
    warnings, invalid_items = [], []
    for item in cart.items:
        product = db.session.get(Product, item.product_id)
        if product is None:
            invalid_items.append({"item": item.to_dict(), "reason": "Product no longer exists"})
            continue
        if product.status != PRODUCT_STATUS_ACTIVE:
            invalid_items.append({"item": item.to_dict(), "reason": "Product is no longer available"})
            continue
        if item.color not in (product.colors or []):
            invalid_items.append({"item": item.to_dict(), "reason": "Selected color is no longer available"})
            continue
        if item.quantity > product.stock:
            warnings.append({
                "item": item.to_dict(),
                "available": product.stock,
                "message": f"Only {product.stock} items available",
            })
        if item.price_cents != product.price_cents:
            warnings.append({
                "item": item.to_dict(),
                "new_price_cents": product.price_cents,
                "message": "Price has changed",
            })
    return {"warnings": warnings, "invalid_items": invalid_items}


def add_item(user_id: int, product_id: int, quantity: int, color: str) -> Cart:
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")

    product = _active_product(product_id)
    if color not in (product.colors or []):
        raise ValidationError("Selected color is not available", details={"colors": list(product.colors or [])})

    cart = get_or_create_cart(user_id)
    existing = cart.find_item(product_id, color)
    new_quantity = quantity + (existing.quantity if existing else 0)

    _check_stock(product, new_quantity)
    _check_limits(cart, line_key=(product_id, color), new_quantity=new_quantity)

    if existing:
        existing.quantity = new_quantity
        existing.price_cents = product.price_cents
    else:
        cart.items.append(CartItem(
            product_id=product.id,
            name=product.name,
            price_cents=product.price_cents,
            image=product.primary_image,
            color=color,
            quantity=quantity,
        ))

    db.session.commit()
    return cart


def _find_line(cart: Cart, product_id: int, color: str | None) -> CartItem:
    matches = [
        item for item in cart.items
        if item.product_id == product_id and (color is None or item.color == color)
    ]
    if not matches:
        raise NotFoundError("Item not found in cart")
    if len(matches) > 1:
        raise ValidationError("color is required: product is in the cart in several colors")
    return matches[0]


def update_item(user_id: int, product_id: int, quantity: int, color: str | None = None) -> Cart:
    """Set a line's quantity; below 1 removes the line."""
    cart = get_or_create_cart(user_id)
    line = _find_line(cart, product_id, color)

    if quantity < 1:
        cart.items.remove(line)
        db.session.commit()
        return cart

    product = db.session.get(Product, product_id)
    if product is None or product.status != PRODUCT_STATUS_ACTIVE:
        raise ValidationError("Product is no longer available")
    _check_stock(product, quantity)
    _check_limits(cart, line_key=(product_id, line.color), new_quantity=quantity)

    line.quantity = quantity
    line.price_cents = product.price_cents
    db.session.commit()
    return cart


def remove_item(user_id: int, product_id: int, color: str | None = None) -> Cart:
    cart = get_or_create_cart(user_id)
    line = _find_line(cart, product_id, color)
    cart.items.remove(line)
    db.session.commit()
    return cart


def clear_cart(user_id: int) -> Cart:
    cart = get_or_create_cart(user_id)
    cart.items.clear()
    db.session.commit()
    return cart
