# backend/storefront/routes/auth.py
"""
Authentication API routes.

Customers register themselves; staff and admin accounts are created with
`flask users create-admin`. Tokens are returned once and sent back as
`Authorization: Bearer <token>`.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..errors import StoreError, ValidationError, error_response, unexpected_error_response
from ..services import auth_service, session_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(user, token: str, session) -> dict:
    return {
        "success": True,
        "data": {
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
        },
    }


@auth_bp.post("/register")
def register_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            first_name=data.get("first_name") or data.get("firstName"),
            last_name=data.get("last_name") or data.get("lastName"),
            email=data.get("email"),
            password=data.get("password"),
        )
        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify(_session_payload(user, token, session)), 201
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Registration failed")


@auth_bp.post("/login")
def login_route():
    data = request.get_json(silent=True) or {}
    try:
        email, password = data.get("email"), data.get("password")
        if not email or not password:
            raise ValidationError("email and password required")

        user = auth_service.authenticate(email, password)
        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify(_session_payload(user, token, session)), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Login failed")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"success": True}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "success": True,
        "data": {
            **user.to_dict(),
            "permissions": sorted(g.capabilities),
        },
    }), 200


def update_details_response():
    """Shared by PUT /api/auth/details and PUT /api/users/me."""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.update_details(g.current_user, data)
        return jsonify({"success": True, "data": user.to_dict()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to update account details")


def change_password_response():
    """
    Shared by PUT /api/auth/password and PUT /api/users/me/password.

    Every other session of the user is revoked; the one making the request
    stays valid.
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.change_password(
            g.current_user,
            data.get("current_password") or data.get("currentPassword"),
            data.get("new_password") or data.get("newPassword"),
        )
        revoked = session_service.revoke_all_user_sessions(
            user.id,
            reason="Password changed",
            keep_token=g.session_token,
        )
        return jsonify({"success": True, "data": {"revoked_sessions": revoked}}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to change password")


@auth_bp.put("/details")
@require_auth
def update_details_route():
    """Body: any of first_name, last_name, email, phone."""
    return update_details_response()


@auth_bp.put("/password")
@require_auth
def change_password_route():
    """Body: {"current_password": str, "new_password": str}"""
    return change_password_response()
