# Overview: Request authentication and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .permissions import capabilities_for
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets g.current_user, g.capabilities and g.session_token. Returns 401
    without calling the view when the header is missing or the session is
    invalid, expired, revoked, or belongs to a deactivated account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"success": False, "error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"success": False, "error": "Invalid or expired token"}), 401

        g.current_user = user
        g.capabilities = capabilities_for(user)
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a capability; must be applied under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"success": False, "error": "Authentication required"}), 401

            if permission_code not in g.capabilities:
                current_app.logger.warning(
                    "Permission denied: user=%s role=%s permission=%s %s %s",
                    g.current_user.id, g.current_user.role, permission_code,
                    request.method, request.path,
                )
                return jsonify({
                    "success": False,
                    "error": "Permission denied",
                    "details": {"required_permission": permission_code},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def optional_auth(f):
    """Resolve the caller if a valid token is sent; anonymous otherwise."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        user = session_service.validate_session(token) if token else None
        g.current_user = user
        g.capabilities = capabilities_for(user)
        return f(*args, **kwargs)

    return decorated_function
