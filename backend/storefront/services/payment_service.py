# Overview: Payment reconciliation; applies verified gateway events to orders.

"""
Payment reconciliation

Each verified event is applied in one transaction that also inserts its
PaymentEvent row. The unique event_id makes delivery idempotent: a replay
finds the row and changes nothing, and a concurrent duplicate loses on the
unique constraint. Notifications are queued only after the commit of the
delivery that actually applied the event.

Status effects:
    payment.succeeded  payment completed, order processing
    payment.failed     payment failed, order payment_failed (stock kept held)
    payment.refunded   payment refunded, order refunded
    payment.cancelled  payment cancelled, order cancelled (stock kept held)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError
from ..extensions import db
from ..models import Order, PaymentEvent
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_PAYMENT_FAILED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_REFUNDED,
    PAYMENT_CANCELLED,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
)
from ..validation import coerce_non_negative_int
from storefront.time_utils import utcnow
from . import notification_service
from .concurrency import lock_for_update, run_with_retry
from .payment_gateway import EVENT_CANCELLED, EVENT_FAILED, EVENT_REFUNDED, EVENT_SUCCEEDED


# Statuses a successful payment may advance to processing
SUCCEEDED_ADVANCES_FROM = frozenset({ORDER_PENDING, ORDER_PAYMENT_FAILED, ORDER_PROCESSING})


# Signed objects can still be malformed. Nested fields are read through
# these helpers; a value of the wrong shape counts as absent.

def _mapping(value) -> dict:
    return value if isinstance(value, dict) else {}


def _records(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def _text(value, limit: int = 255) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text[:limit] or None


def _metadata_order_id(obj: dict) -> int | None:
    metadata = _mapping(obj.get("metadata"))
    raw = metadata.get("order_id") or metadata.get("orderId")
    if isinstance(raw, bool):
        return None
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _gateway_reference(obj: dict) -> str | None:
    return _text(obj.get("payment_intent"), 128) or _text(obj.get("id"), 128)


def find_order_for_event(obj: dict) -> Order | None:
    """Locate the order by metadata id, else by stored gateway transaction id."""
    order_id = _metadata_order_id(obj)
    if order_id is not None:
        return lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()

    references = [ref for ref in (_text(obj.get("payment_intent"), 128), _text(obj.get("id"), 128)) if ref]
    if not references:
        return None
    return lock_for_update(
        db.session.query(Order).filter(Order.payment_transaction_id.in_(references))
    ).first()


def _card_last4(obj: dict) -> str | None:
    direct = _text(obj.get("card_last4"))
    if direct:
        return direct[-4:]
    candidates = [_mapping(obj.get("payment_method_details"))]
    charges = _records(_mapping(obj.get("charges")).get("data"))
    candidates += [_mapping(charge.get("payment_method_details")) for charge in charges]
    for details in candidates:
        last4 = _text(_mapping(details.get("card")).get("last4"))
        if last4:
            return last4[-4:]
    return None


def _apply_succeeded(order: Order, obj: dict):
    order.payment_status = PAYMENT_COMPLETED
    order.payment_transaction_id = _gateway_reference(obj) or order.payment_transaction_id
    order.card_last4 = _card_last4(obj) or order.card_last4
    order.paid_at = utcnow()
    order.payment_error = None

    if order.status in SUCCEEDED_ADVANCES_FROM:
        order.status = ORDER_PROCESSING
    else:
        current_app.logger.warning(
            "Order %s paid while in status %s; status left unchanged",
            order.id, order.status,
        )
    return notification_service.send_payment_confirmation


def _apply_failed(order: Order, obj: dict):
    error = _text(_mapping(obj.get("last_payment_error")).get("message")) or "Payment failed"
    order.payment_status = PAYMENT_FAILED
    order.payment_error = error
    order.status = ORDER_PAYMENT_FAILED
    current_app.logger.warning("Payment failed for order %s: %s", order.id, error)
    return notification_service.send_payment_failure


def _apply_refunded(order: Order, obj: dict):
    refunds = _records(_mapping(obj.get("refunds")).get("data"))
    reason = (_text(refunds[0].get("reason")) if refunds else None) or _text(obj.get("reason"))
    amount = obj.get("amount_refunded")
    order.payment_status = PAYMENT_REFUNDED
    order.refund_amount_cents = (
        coerce_non_negative_int(amount, "amount_refunded") if amount is not None else order.total_cents
    )
    order.refund_reason = reason
    order.refunded_at = utcnow()
    order.status = ORDER_REFUNDED
    return notification_service.send_refund_confirmation


def _apply_cancelled(order: Order, obj: dict):
    order.payment_status = PAYMENT_CANCELLED
    order.status = ORDER_CANCELLED
    if order.stock_held:
        current_app.logger.info("Order %s cancelled by payment gateway; stock remains held", order.id)
    return None


EVENT_HANDLERS = {
    EVENT_SUCCEEDED: _apply_succeeded,
    EVENT_FAILED: _apply_failed,
    EVENT_REFUNDED: _apply_refunded,
    EVENT_CANCELLED: _apply_cancelled,
}


def handle_event(event: dict) -> dict:
    """
    Apply one verified event (see payment_gateway.construct_event).

    Returns the webhook acknowledgement body. Raises NotFoundError when the
    event cannot be matched to an order; nothing is recorded, so the gateway's
    retry can succeed once the order exists.
    """
    event_id = event["id"]
    event_type = event["type"]
    obj = event.get("object") or {}

    def _op():
        if db.session.query(PaymentEvent.id).filter_by(event_id=event_id).first():
            return {"received": True, "duplicate": True}, None, None

        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            current_app.logger.info("Ignoring webhook event %s of type %s", event_id, event.get("raw_type", event_type))
            return {"received": True, "ignored": True}, None, None

        order = find_order_for_event(obj)
        if order is None:
            raise NotFoundError("Order not found for payment event", details={"event_id": event_id})

        previous_status = order.status
        notify = handler(order, obj)
        db.session.add(PaymentEvent(
            event_id=event_id,
            event_type=event_type,
            order_id=order.id,
            gateway_object_id=_text(obj.get("id"), 128),
        ))
        db.session.commit()

        current_app.logger.info(
            "Applied %s (%s) to order %s: %s -> %s",
            event_type, event_id, order.id, previous_status, order.status,
        )
        return {"received": True, "order_id": order.id, "status": order.status}, order, notify

    try:
        body, order, notify = run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("Webhook event %s recorded by a concurrent delivery", event_id)
        return {"received": True, "duplicate": True}

    if notify is not None:
        notify(order, event_id)
    return body
