# backend/storefront/routes/shipping.py

from flask import Blueprint, jsonify, request

from ..errors import StoreError, error_response, unexpected_error_response
from ..services import shipping_service
from ..validation import coerce_non_negative_int

shipping_bp = Blueprint("shipping", __name__, url_prefix="/api/shipping")


@shipping_bp.post("/validate")
def validate_address_route():
    data = request.get_json(silent=True) or {}
    try:
        address = shipping_service.validate_address(data.get("shipping_address", data))
        return jsonify({
            "success": True,
            "data": {
                "address": address,
                "shipping": shipping_service.quote(address["city"]),
            },
        }), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Address validation failed")


@shipping_bp.get("/cities")
def cities_route():
    return jsonify({"success": True, "data": shipping_service.list_cities()}), 200


@shipping_bp.get("/quote")
def quote_route():
    """Query params: city, subtotal_cents."""
    try:
        subtotal = request.args.get("subtotal_cents")
        subtotal_cents = coerce_non_negative_int(subtotal, "subtotal_cents") if subtotal else None
        quote = shipping_service.quote(request.args.get("city"), subtotal_cents)
        return jsonify({"success": True, "data": quote}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Shipping quote failed")
