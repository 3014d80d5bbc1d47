# backend/storefront/routes/orders.py
"""
Order API routes.

Creation holds stock; status changes go through the transition table and
release or re-hold stock as the order enters or leaves cancelled/returned.
Customers see only their own orders.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import StoreError, ValidationError, error_response, unexpected_error_response
from ..services import order_service, transition_service
from ..time_utils import parse_iso_datetime
from ..validation import parse_pagination

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _transition_payload(result) -> dict:
    order = result.order
    return {
        "success": True,
        "data": {
            "order": order.to_dict(include_user=True),
            "previous_status": result.previous_status,
            "stock": result.stock,
        },
    }


def _parse_datetime_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


@orders_bp.post("")
@require_auth
@require_permission("PLACE_ORDER")
def create_order_route():
    """
    Body:
      items: [{product_id, quantity, color}]
      shipping_address: {first_name, last_name, address, city, state, postal_code, phone, email}
      payment_method: "cod" | "card"
      subtotal_cents, shipping_fee_cents, total_cents
      notes?: str
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.create_order(
            user_id=g.current_user.id,
            items=data.get("items"),
            shipping_address=data.get("shipping_address", data.get("shippingAddress")),
            payment_method=data.get("payment_method", data.get("paymentMethod")),
            subtotal_cents=data.get("subtotal_cents"),
            shipping_fee_cents=data.get("shipping_fee_cents"),
            total_cents=data.get("total_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"success": True, "data": order.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to create order")


@orders_bp.get("")
@require_auth
@require_permission("VIEW_ALL_ORDERS")
def list_orders_route():
    """Query params: status, payment_status, user_id, start, end, sort, page, per_page."""
    try:
        page, per_page = parse_pagination(request.args, default_per_page=10)
        user_id = request.args.get("user_id", type=int)
        result = order_service.list_orders(
            status=request.args.get("status") or None,
            payment_status=request.args.get("payment_status") or None,
            user_id=user_id,
            start=_parse_datetime_arg("start"),
            end=_parse_datetime_arg("end"),
            sort=request.args.get("sort", "newest"),
            page=page,
            per_page=per_page,
        )
        result["status_counts"] = order_service.status_counts()
        return jsonify({"success": True, "data": result}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to list orders")


@orders_bp.get("/mine")
@require_auth
def list_my_orders_route():
    try:
        page, per_page = parse_pagination(request.args, default_per_page=10)
        result = order_service.list_user_orders(
            g.current_user.id,
            status=request.args.get("status") or None,
            page=page,
            per_page=per_page,
        )
        result["status_counts"] = order_service.status_counts(g.current_user.id)
        return jsonify({"success": True, "data": result}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to list orders")


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_actor(order_id, g.current_user)
        data = order.to_dict(include_user=True)
        data["allowed_transitions"] = (
            transition_service.allowed_targets(order.status, g.capabilities)
            if "UPDATE_ORDER_STATUS" in g.capabilities
            else []
        )
        return jsonify({"success": True, "data": data}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to fetch order")


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_permission("UPDATE_ORDER_STATUS")
def update_status_route(order_id: int):
    """Body: {"status": str, "tracking_info"?: {carrier, tracking_number, tracking_url}}"""
    data = request.get_json(silent=True) or {}
    try:
        result = order_service.transition_order(
            order_id,
            data.get("status"),
            g.current_user,
            tracking_info=data.get("tracking_info", data.get("trackingInfo")),
        )
        return jsonify(_transition_payload(result)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to update order status")


@orders_bp.put("/<int:order_id>/payment")
@require_auth
@require_permission("UPDATE_PAYMENT_STATUS")
def update_payment_route(order_id: int):
    """Body: {"payment_status": "pending" | "completed" | "failed"}"""
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.update_payment_status(
            order_id,
            data.get("payment_status", data.get("paymentStatus")),
            g.current_user,
        )
        return jsonify({"success": True, "data": order.to_dict(include_user=True)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to update payment status")


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Owner or staff; only pending and processing orders can be cancelled."""
    try:
        result = order_service.cancel_order(order_id, g.current_user)
        return jsonify(_transition_payload(result)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to cancel order")
