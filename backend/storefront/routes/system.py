# backend/storefront/routes/system.py
"""
System health endpoint.

Checks database connectivity and the notification outbox backlog.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Notification, Product
from ..models.notifications import NOTIFICATION_FAILED, NOTIFICATION_PENDING
from storefront.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"products": product_count},
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_notification_health() -> dict:
    """Degraded (still 200) when deliveries have permanently failed."""
    try:
        pending = db.session.query(Notification).filter_by(status=NOTIFICATION_PENDING).count()
        failed = db.session.query(Notification).filter_by(status=NOTIFICATION_FAILED).count()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Notification health check failed")
        return {"status": "unhealthy", "error": "Notification outbox error"}

    return {
        "status": "degraded" if failed else "healthy",
        "details": {
            "pending": pending,
            "failed": failed,
            "dispatch_mode": current_app.config.get("NOTIFICATION_DISPATCH"),
            "mail_backend": current_app.config.get("MAIL_BACKEND"),
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    notification_health = check_notification_health()

    all_checks = [database_health, notification_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "success": http_status == 200,
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "notifications": notification_health,
        },
    }, http_status
