# backend/storefront/routes/users.py
"""
Self-service account routes for the signed-in user.

Profile and password apply to every role. The address book and account
deletion are customer features.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import StoreError, error_response, unexpected_error_response
from ..services import account_service
from .auth import change_password_response, update_details_response

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/me")
@require_auth
def get_profile_route():
    try:
        return jsonify({"success": True, "data": account_service.get_profile(g.current_user)}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to fetch profile")


@users_bp.put("/me")
@require_auth
def update_profile_route():
    return update_details_response()


@users_bp.put("/me/password")
@require_auth
def change_password_route():
    return change_password_response()


@users_bp.delete("/me")
@require_auth
def delete_account_route():
    try:
        user_id = g.current_user.id
        account_service.delete_account(g.current_user)
        return jsonify({"success": True, "data": {"id": user_id}}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to delete account")


@users_bp.get("/me/addresses")
@require_auth
@require_permission("PLACE_ORDER")
def list_addresses_route():
    try:
        entries = account_service.list_addresses(g.current_user.id)
        return jsonify({"success": True, "data": [entry.to_dict() for entry in entries]}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to fetch addresses")


@users_bp.post("/me/addresses")
@require_auth
@require_permission("PLACE_ORDER")
def add_address_route():
    """Body: {"address": {...}, "label": str?, "is_default": bool?}"""
    data = request.get_json(silent=True) or {}
    try:
        entry = account_service.add_address(g.current_user.id, data)
        return jsonify({"success": True, "data": entry.to_dict()}), 201
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to save address")


@users_bp.put("/me/addresses/<int:address_id>")
@require_auth
@require_permission("PLACE_ORDER")
def update_address_route(address_id: int):
    data = request.get_json(silent=True) or {}
    try:
        entry = account_service.update_address(g.current_user.id, address_id, data)
        return jsonify({"success": True, "data": entry.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to update address")


@users_bp.delete("/me/addresses/<int:address_id>")
@require_auth
@require_permission("PLACE_ORDER")
def delete_address_route(address_id: int):
    try:
        account_service.delete_address(g.current_user.id, address_id)
        return jsonify({"success": True}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to delete address")
