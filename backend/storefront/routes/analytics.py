# backend/storefront/routes/analytics.py
"""
Reporting endpoints for staff dashboards.

Revenue excludes cancelled and returned orders. Date ranges accept
ISO-8601 start/end and default to the last 30 days.
"""

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import StoreError, error_response, unexpected_error_response
from ..services import reporting_service
from ..validation import coerce_positive_int

analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")

MAX_LIMIT = 50


def _limit() -> int:
    return min(coerce_positive_int(request.args.get("limit", 10), "limit"), MAX_LIMIT)


@analytics_bp.get("/dashboard")
@require_auth
@require_permission("VIEW_ANALYTICS")
def dashboard_route():
    try:
        return jsonify({"success": True, "data": reporting_service.dashboard()}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to build dashboard")


@analytics_bp.get("/sales")
@require_auth
@require_permission("VIEW_ANALYTICS")
def sales_route():
    """Query params: start, end, group_by (day|week|month)."""
    try:
        data = reporting_service.sales(
            start=request.args.get("start"),
            end=request.args.get("end"),
            group_by=request.args.get("group_by", "day"),
        )
        return jsonify({"success": True, "data": data}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to build sales report")


@analytics_bp.get("/products")
@require_auth
@require_permission("VIEW_ANALYTICS")
def products_route():
    try:
        return jsonify({"success": True, "data": reporting_service.products(limit=_limit())}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to build product report")


@analytics_bp.get("/customers")
@require_auth
@require_permission("VIEW_ANALYTICS")
def customers_route():
    try:
        return jsonify({"success": True, "data": reporting_service.customers(limit=_limit())}), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, "Failed to build customer report")
