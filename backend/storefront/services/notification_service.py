# Overview: Customer email outbox: enqueue after commit, dispatch out of band.

"""
Notification outbox

Callers invoke the send_* helpers only after their own transaction has
committed. A helper writes one Notification row (dedup_key unique) and, in
"thread" mode, hands the row id to a background worker. In "deferred" mode
rows wait for `flask notifications dispatch`.

No helper ever raises into its caller: a failed enqueue is logged and the
primary operation stands. Delivery failures are retried until
NOTIFICATION_MAX_ATTEMPTS, then the row is marked FAILED.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ExternalServiceError
from ..extensions import db
from ..models import Notification, Order
from ..models.notifications import NOTIFICATION_FAILED, NOTIFICATION_PENDING, NOTIFICATION_SENT
from storefront.time_utils import utcnow
from . import mailer


EXECUTOR_KEY = "storefront_notification_executor"

KIND_ORDER_CONFIRMATION = "order_confirmation"
KIND_ORDER_STATUS_UPDATE = "order_status_update"
KIND_ORDER_CANCELLED = "order_cancelled"
KIND_PAYMENT_CONFIRMATION = "payment_confirmation"
KIND_PAYMENT_FAILED = "payment_failed"
KIND_REFUND_CONFIRMATION = "refund_confirmation"

STORE_NAME = "L'ardene Leather"


def format_money(cents: int | None) -> str:
    return f"Rs. {(cents or 0) / 100:,.2f}"


def init_notifications(app) -> None:
    if app.config.get("NOTIFICATION_DISPATCH", "thread") == "thread":
        app.extensions[EXECUTOR_KEY] = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="notifications"
        )


# -----------------------------------------------------------------------------
# Message bodies
# -----------------------------------------------------------------------------

def _greeting(order: Order) -> str:
    address = order.shipping_address or {}
    name = address.get("first_name") or (order.user.first_name if order.user else "")
    return f"Dear {name}," if name else "Hello,"


def _items_block(order: Order) -> str:
    lines = [
        f"  - {item.name} ({item.color}) x {item.quantity}: {format_money(item.line_total_cents)}"
        for item in order.items
    ]
    return "\n".join(lines)


def _order_confirmation_body(order: Order) -> str:
    address = order.shipping_address or {}
    return "\n".join([
        _greeting(order),
        "",
        f"Thank you for your order #{order.id}.",
        "",
        "Items:",
        _items_block(order),
        "",
        f"Subtotal: {format_money(order.subtotal_cents)}",
        f"Shipping: {format_money(order.shipping_fee_cents)}",
        f"Total:    {format_money(order.total_cents)}",
        "",
        f"Payment method: {'Cash on delivery' if order.payment_method == 'cod' else 'Card'}",
        f"Shipping to: {address.get('address', '')}, {address.get('city', '')}, {address.get('state', '')}",
        "",
        STORE_NAME,
    ])


def _status_update_body(order: Order) -> str:
    lines = [
        _greeting(order),
        "",
        f"The status of your order #{order.id} is now: {order.status}.",
    ]
    tracking = order.tracking_info
    if tracking:
        lines.append("")
        lines.append(f"Carrier: {tracking['carrier'] or '-'}")
        lines.append(f"Tracking number: {tracking['tracking_number'] or '-'}")
        if tracking["tracking_url"]:
            lines.append(f"Track your parcel: {tracking['tracking_url']}")
    lines += ["", STORE_NAME]
    return "\n".join(lines)


def _payment_confirmation_body(order: Order) -> str:
    return "\n".join([
        _greeting(order),
        "",
        f"We have received your payment of {format_money(order.total_cents)} for order #{order.id}.",
        f"Transaction: {order.payment_transaction_id or '-'}",
        "",
        STORE_NAME,
    ])


def _payment_failure_body(order: Order) -> str:
    return "\n".join([
        _greeting(order),
        "",
        f"The payment for order #{order.id} could not be completed.",
        f"Reason: {order.payment_error or 'declined by the payment provider'}",
        "Please try again or choose cash on delivery.",
        "",
        STORE_NAME,
    ])


def _refund_body(order: Order) -> str:
    return "\n".join([
        _greeting(order),
        "",
        f"A refund of {format_money(order.refund_amount_cents)} for order #{order.id} has been processed.",
        f"Reason: {order.refund_reason or '-'}",
        "",
        STORE_NAME,
    ])


# -----------------------------------------------------------------------------
# Enqueue
# -----------------------------------------------------------------------------

def enqueue(
    kind: str,
    order: Order,
    subject: str,
    body: str,
    dedup_key: str,
) -> Notification | None:
    """
    Write an outbox row and schedule its delivery.

    Returns None when nothing was queued: an identical notification already
    exists, the order has no recipient, or the write failed (logged).
    """
    recipient = order.recipient_email
    if not recipient:
        current_app.logger.warning("Order %s has no recipient email; %s not queued", order.id, kind)
        return None

    notification = Notification(
        kind=kind,
        order_id=order.id,
        recipient=recipient,
        subject=subject,
        body=body,
        dedup_key=dedup_key,
        status=NOTIFICATION_PENDING,
        attempts=0,
    )
    try:
        db.session.add(notification)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("Notification %s already queued; skipping", dedup_key)
        return None
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to queue notification %s", dedup_key)
        return None

    _schedule(notification.id)
    return notification


def _schedule(notification_id: int) -> None:
    executor = current_app.extensions.get(EXECUTOR_KEY)
    if executor is None:
        return
    app = current_app._get_current_object()
    try:
        executor.submit(_dispatch_in_context, app, notification_id)
    except RuntimeError:
        # Executor shut down; the row stays PENDING for the CLI dispatcher
        current_app.logger.warning("Notification worker unavailable; %s left pending", notification_id)


def _dispatch_in_context(app, notification_id: int) -> None:
    with app.app_context():
        try:
            dispatch_notification(notification_id)
        except Exception:
            db.session.rollback()
            app.logger.exception("Notification %s dispatch crashed", notification_id)


def _safe_enqueue(kind: str, order: Order, subject: str, build_body, dedup_key: str):
    try:
        return enqueue(kind, order, subject, build_body(order), dedup_key)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to build %s notification for order %s", kind, order.id)
        return None


def send_order_confirmation(order: Order):
    return _safe_enqueue(
        KIND_ORDER_CONFIRMATION,
        order,
        f"Order Confirmation - #{order.id}",
        _order_confirmation_body,
        f"{KIND_ORDER_CONFIRMATION}:{order.id}",
    )


def send_order_status_update(order: Order):
    return _safe_enqueue(
        KIND_ORDER_STATUS_UPDATE,
        order,
        f"Order Status Update - #{order.id}",
        _status_update_body,
        f"{KIND_ORDER_STATUS_UPDATE}:{order.id}:{order.status}:{order.version_id}",
    )


def send_order_cancelled(order: Order):
    return _safe_enqueue(
        KIND_ORDER_CANCELLED,
        order,
        f"Order Cancelled - #{order.id}",
        _status_update_body,
        f"{KIND_ORDER_CANCELLED}:{order.id}:{order.version_id}",
    )


def send_payment_confirmation(order: Order, event_id: str | None = None):
    return _safe_enqueue(
        KIND_PAYMENT_CONFIRMATION,
        order,
        f"Payment Received - Order #{order.id}",
        _payment_confirmation_body,
        f"{KIND_PAYMENT_CONFIRMATION}:{order.id}:{event_id or order.version_id}",
    )


def send_payment_failure(order: Order, event_id: str | None = None):
    return _safe_enqueue(
        KIND_PAYMENT_FAILED,
        order,
        f"Payment Failed - Order #{order.id}",
        _payment_failure_body,
        f"{KIND_PAYMENT_FAILED}:{order.id}:{event_id or order.version_id}",
    )


def send_refund_confirmation(order: Order, event_id: str | None = None):
    return _safe_enqueue(
        KIND_REFUND_CONFIRMATION,
        order,
        f"Refund Processed - Order #{order.id}",
        _refund_body,
        f"{KIND_REFUND_CONFIRMATION}:{order.id}:{event_id or order.version_id}",
    )


# -----------------------------------------------------------------------------
# Dispatch
# -----------------------------------------------------------------------------

def _record_failure(notification: Notification, error: str) -> None:
    max_attempts = current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
    notification.last_error = error[:512]
    if notification.attempts >= max_attempts:
        notification.status = NOTIFICATION_FAILED
        current_app.logger.error(
            "Notification %s failed permanently after %d attempts: %s",
            notification.id, notification.attempts, notification.last_error,
        )
    else:
        current_app.logger.warning(
            "Notification %s attempt %d failed: %s",
            notification.id, notification.attempts, notification.last_error,
        )
    db.session.commit()


def dispatch_notification(notification_id: int) -> bool:
    """
    Attempt delivery of one PENDING row. Returns True if it was sent.

    Transport errors are recorded on the row; the caller never sees them.
    """
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.status != NOTIFICATION_PENDING:
        return False

    notification.attempts += 1
    try:
        mailer.send_mail(notification.recipient, notification.subject, notification.body)
    except ExternalServiceError as exc:
        _record_failure(notification, exc.message)
        return False
    except Exception as exc:
        current_app.logger.exception("Notification %s could not be built or sent", notification.id)
        _record_failure(notification, f"{type(exc).__name__}: {exc}")
        return False

    notification.status = NOTIFICATION_SENT
    notification.sent_at = utcnow()
    notification.last_error = None
    db.session.commit()
    return True


def dispatch_pending(limit: int = 50) -> dict:
    """Deliver up to `limit` PENDING rows, oldest first."""
    ids = [
        row_id for (row_id,) in db.session.query(Notification.id)
        .filter(Notification.status == NOTIFICATION_PENDING)
        .order_by(Notification.created_at.asc(), Notification.id.asc())
        .limit(limit)
        .all()
    ]
    summary = {"attempted": len(ids), "sent": 0, "failed": 0}
    for notification_id in ids:
        if dispatch_notification(notification_id):
            summary["sent"] += 1
        else:
            summary["failed"] += 1
    return summary
