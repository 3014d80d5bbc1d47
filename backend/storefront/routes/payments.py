# backend/storefront/routes/payments.py
"""
Payment gateway webhook.

The raw body is verified against the Payment-Signature header before it is
parsed. Deliveries are at-least-once; replays of an applied event answer
200 with duplicate=true.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import StoreError, error_response, unexpected_error_response
from ..services import payment_gateway, payment_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/webhook")
def webhook_route():
    payload = request.get_data()
    try:
        event = payment_gateway.construct_event(
            payload,
            request.headers.get(payment_gateway.SIGNATURE_HEADER),
            current_app.config["PAYMENT_WEBHOOK_SECRET"],
            tolerance=current_app.config["PAYMENT_WEBHOOK_TOLERANCE_SECONDS"],
        )
    except StoreError as e:
        current_app.logger.warning("Rejected webhook delivery: %s", e.message)
        return error_response(e)

    try:
        body = payment_service.handle_event(event)
        return jsonify(body), 200
    except StoreError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error_response(e, f"Webhook handling failed for event {event['id']}")
