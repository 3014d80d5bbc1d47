# backend/storefront/routes/cart.py

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import StoreError, ValidationError, error_response, unexpected_error_response
from ..services import cart_service
from ..validation import coerce_int, coerce_positive_int

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart_payload(cart) -> dict:
    data = cart.to_dict()
    data.update(cart_service.review_cart(cart))
    return {"success": True, "data": data}


@cart_bp.get("")
@require_auth
@require_permission("MANAGE_CART")
def get_cart_route():
    try:
        cart = cart_service.get_or_create_cart(g.current_user.id)
        return jsonify(_cart_payload(cart)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to fetch cart")


@cart_bp.post("")
@require_auth
@require_permission("MANAGE_CART")
def add_item_route():
    """Body: {"product_id": int, "quantity": int, "color": str}"""
    data = request.get_json(silent=True) or {}
    try:
        product_id = coerce_positive_int(data.get("product_id", data.get("productId")), "product_id")
        quantity = coerce_positive_int(data.get("quantity", 1), "quantity")
        color = data.get("color")
        if not isinstance(color, str) or not color.strip():
            raise ValidationError("color is required")

        cart = cart_service.add_item(g.current_user.id, product_id, quantity, color.strip())
        return jsonify(_cart_payload(cart)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to add item to cart")


@cart_bp.put("/<int:product_id>")
@require_auth
@require_permission("MANAGE_CART")
def update_item_route(product_id: int):
    """Body: {"quantity": int}; ?color= picks the line. quantity < 1 removes it."""
    data = request.get_json(silent=True) or {}
    try:
        quantity = coerce_int(data.get("quantity"), "quantity")
        cart = cart_service.update_item(
            g.current_user.id, product_id, quantity, color=request.args.get("color") or data.get("color")
        )
        return jsonify(_cart_payload(cart)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to update cart item")


@cart_bp.delete("/<int:product_id>")
@require_auth
@require_permission("MANAGE_CART")
def remove_item_route(product_id: int):
    try:
        cart = cart_service.remove_item(g.current_user.id, product_id, color=request.args.get("color"))
        return jsonify(_cart_payload(cart)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to remove cart item")


@cart_bp.delete("")
@require_auth
@require_permission("MANAGE_CART")
def clear_cart_route():
    try:
        cart = cart_service.clear_cart(g.current_user.id)
        return jsonify(_cart_payload(cart)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to clear cart")
