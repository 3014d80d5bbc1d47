# backend/storefront/routes/products.py
"""
Catalog API routes.

Anyone can browse active products. Callers holding MANAGE_PRODUCTS also
see drafts and archived entries when they ask for them.

Stock is changed only through PUT /<id>/stock, never through a product
update.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import optional_auth, require_auth, require_permission
from ..errors import StoreError, ValidationError, error_response, unexpected_error_response
from ..services import products_service
from ..validation import (
    PRODUCT_POLICY,
    PRODUCT_UPDATE_POLICY,
    coerce_non_negative_int,
    coerce_positive_int,
    enforce_rules_product,
    parse_pagination,
    validate_payload,
)
from ..models import Product

products_bp = Blueprint("products", __name__, url_prefix="/api/products")

TRUE_VALUES = {"1", "true", "yes", "on"}


def _optional_cents(args, key: str):
    raw = args.get(key)
    if raw in (None, ""):
        return None
    return coerce_non_negative_int(raw, key)


def _can_manage() -> bool:
    return "MANAGE_PRODUCTS" in getattr(g, "capabilities", frozenset())


@products_bp.get("")
@optional_auth
def list_products_route():
    """
    Query params: search, category, min_price_cents, max_price_cents,
    in_stock, sort, page, per_page. Managers may add
    include_unpublished=true and status.
    """
    try:
        page, per_page = parse_pagination(request.args)
        include_unpublished = (
            _can_manage()
            and request.args.get("include_unpublished", "").lower() in TRUE_VALUES
        )
        result = products_service.list_products(
            search=request.args.get("search"),
            category=request.args.get("category"),
            status=request.args.get("status") if include_unpublished else None,
            min_price_cents=_optional_cents(request.args, "min_price_cents"),
            max_price_cents=_optional_cents(request.args, "max_price_cents"),
            in_stock=request.args.get("in_stock", "").lower() in TRUE_VALUES,
            sort=request.args.get("sort", "newest"),
            page=page,
            per_page=per_page,
            include_unpublished=include_unpublished,
        )
        return jsonify({"success": True, "data": result}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to list products")


@products_bp.get("/low-stock")
@require_auth
@require_permission("ADJUST_STOCK")
def low_stock_route():
    try:
        products = products_service.list_low_stock()
        return jsonify({
            "success": True,
            "data": {"items": [p.to_dict() for p in products], "count": len(products)},
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to list low-stock products")


@products_bp.get("/<int:product_id>")
@optional_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id, include_unpublished=_can_manage())
        return jsonify({"success": True, "data": product.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to fetch product")


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    data = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(patch=patch, actor_user_id=g.current_user.id)
        return jsonify({"success": True, "data": product.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to create product")


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    data = request.get_json(silent=True) or {}
    try:
        if "stock" in data:
            raise ValidationError("Use PUT /api/products/<id>/stock to change stock")
        patch = validate_payload(model=Product, payload=data, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(product_id, patch=patch)
        return jsonify({"success": True, "data": product.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to update product")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def archive_product_route(product_id: int):
    """Soft delete: order history keeps pointing at the row."""
    try:
        product = products_service.archive_product(product_id)
        return jsonify({"success": True, "data": product.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to archive product")


@products_bp.put("/<int:product_id>/stock")
@require_auth
@require_permission("ADJUST_STOCK")
def adjust_stock_route(product_id: int):
    """Body: {"operation": "add"|"remove", "quantity": int, "note"?: str}"""
    data = request.get_json(silent=True) or {}
    try:
        quantity = coerce_positive_int(data.get("quantity"), "quantity")
        product = products_service.adjust_product_stock(
            product_id,
            operation=data.get("operation"),
            quantity=quantity,
            actor_user_id=g.current_user.id,
            note=data.get("note"),
        )
        return jsonify({"success": True, "data": product.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to adjust stock")
