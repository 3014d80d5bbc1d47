# Overview: Order creation, status transitions, cancellation and queries.

"""
Order service

Every write is one unit of work under run_with_retry:

    lock order -> validator -> mutate -> reconciliation -> commit -> notify

Reconciliation (stock hold/release) runs inside the same transaction as the
order change it belongs to, so an order and its stock can never disagree
after a commit. Notifications are queued only once the commit succeeded and
never fail the request.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func

from ..errors import AuthorizationError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Product, User
from ..models.catalog import PRODUCT_STATUS_ACTIVE
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_COD,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
)
from ..pagination import paginate
from ..permissions import capabilities_for
from ..validation import coerce_non_negative_int, coerce_positive_int
from storefront.time_utils import utcnow
from . import notification_service, reconciliation_service, shipping_service, transition_service
from .concurrency import lock_for_update, run_with_retry


PAYMENT_METHOD_ALIASES = {
    "cod": PAYMENT_METHOD_COD,
    "cash_on_delivery": PAYMENT_METHOD_COD,
    "card": PAYMENT_METHOD_CARD,
}

MANUAL_PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED)

MAX_NOTES_LENGTH = 500
MAX_ORDER_LINES = 50

SORT_OPTIONS = {
    "newest": (Order.created_at.desc(), Order.id.desc()),
    "oldest": (Order.created_at.asc(), Order.id.asc()),
    "total_desc": (Order.total_cents.desc(), Order.id.desc()),
    "total_asc": (Order.total_cents.asc(), Order.id.asc()),
}


@dataclass
class TransitionResult:
    order: Order
    previous_status: str
    stock: dict | None


# -----------------------------------------------------------------------------
# Creation
# -----------------------------------------------------------------------------

def _normalize_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")
    if len(items) > MAX_ORDER_LINES:
        raise ValidationError(f"Order cannot contain more than {MAX_ORDER_LINES} lines")

    normalized = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_ref = raw.get("product_id", raw.get("product"))
        if isinstance(product_ref, dict):
            product_ref = product_ref.get("id")
        if product_ref is None:
            raise ValidationError(f"items[{index}].product_id is required")
        color = raw.get("color")
        if not isinstance(color, str) or not color.strip():
            raise ValidationError(f"items[{index}].color is required")
        normalized.append({
            "product_id": coerce_positive_int(product_ref, f"items[{index}].product_id"),
            "quantity": coerce_positive_int(raw.get("quantity"), f"items[{index}].quantity"),
            "color": color.strip(),
        })
    return normalized


def normalize_payment_method(value) -> str:
    method = PAYMENT_METHOD_ALIASES.get(str(value or "").strip().lower())
    if method is None:
        raise ValidationError(
            "Invalid payment method",
            details={"payment_method": value, "allowed": sorted(PAYMENT_METHOD_ALIASES)},
        )
    return method


def _load_products(lines: list[dict]) -> dict[int, Product]:
    """Resolve every line's product and pre-check availability per product."""
    products: dict[int, Product] = {}
    requested: dict[int, int] = {}
    for line in lines:
        product_id = line["product_id"]
        product = products.get(product_id) or db.session.get(Product, product_id)
        if product is None or product.status != PRODUCT_STATUS_ACTIVE:
            raise NotFoundError(f"Product not found: {product_id}", details={"product_id": product_id})
        if line["color"] not in (product.colors or []):
            raise ValidationError(
                f"Color '{line['color']}' is not available for {product.name}",
                details={"product_id": product_id, "colors": list(product.colors or [])},
            )
        products[product_id] = product
        requested[product_id] = requested.get(product_id, 0) + line["quantity"]

    for product_id, quantity in requested.items():
        product = products[product_id]
        if quantity > product.stock:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}",
                details={"product_id": product_id, "requested_quantity": quantity, "available": product.stock},
            )
    return products


def create_order(
    user_id: int,
    items,
    shipping_address,
    payment_method,
    subtotal_cents,
    shipping_fee_cents,
    total_cents,
    notes: str | None = None,
) -> Order:
    """
    Create a pending order and hold its stock in one transaction.

    Raises:
        ValidationError: malformed input or totals that do not add up
        NotFoundError: a product is missing or not on sale
        InsufficientStockError: a line cannot be covered, checked before
            writing and again by the guarded decrement at commit time
    """
    lines = _normalize_items(items)
    address = shipping_service.check_address_fields(shipping_address)
    method = normalize_payment_method(payment_method)
    subtotal_cents = coerce_non_negative_int(subtotal_cents, "subtotal_cents")
    shipping_fee_cents = coerce_non_negative_int(shipping_fee_cents, "shipping_fee_cents")
    total_cents = coerce_non_negative_int(total_cents, "total_cents")
    if notes is not None:
        notes = str(notes).strip() or None
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"notes exceeds max length {MAX_NOTES_LENGTH}")

    if total_cents != subtotal_cents + shipping_fee_cents:
        raise ValidationError(
            "total_cents must equal subtotal_cents + shipping_fee_cents",
            details={"expected_total_cents": subtotal_cents + shipping_fee_cents},
        )

    def _op():
        products = _load_products(lines)

        expected_subtotal = sum(products[line["product_id"]].price_cents * line["quantity"] for line in lines)
        if subtotal_cents != expected_subtotal:
            raise ValidationError(
                "subtotal_cents does not match current item prices",
                details={"expected_subtotal_cents": expected_subtotal},
            )

        order = Order(
            user_id=user_id,
            shipping_address=address,
            payment_method=method,
            payment_status=PAYMENT_PENDING,
            subtotal_cents=subtotal_cents,
            shipping_fee_cents=shipping_fee_cents,
            total_cents=total_cents,
            notes=notes,
            stock_held=False,
        )
        for line in lines:
            product = products[line["product_id"]]
            order.items.append(OrderItem(
                product_id=product.id,
                name=product.name,
                price_cents=product.price_cents,
                image=product.primary_image,
                color=line["color"],
                quantity=line["quantity"],
            ))

        db.session.add(order)
        db.session.flush()
        reconciliation_service.hold_order_stock(order, actor_user_id=user_id)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notification_service.send_order_confirmation(order)
    return order


# -----------------------------------------------------------------------------
# Transitions
# -----------------------------------------------------------------------------

def _tracking_fields(tracking_info) -> dict:
    if tracking_info is None:
        return {}
    if not isinstance(tracking_info, dict):
        raise ValidationError("tracking_info must be an object")
    fields = {
        "tracking_carrier": tracking_info.get("carrier"),
        "tracking_number": tracking_info.get("tracking_number", tracking_info.get("trackingNumber")),
        "tracking_url": tracking_info.get("tracking_url", tracking_info.get("trackingUrl")),
    }
    limits = {"tracking_carrier": 64, "tracking_number": 128, "tracking_url": 512}
    cleaned = {}
    for key, value in fields.items():
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        value = value.strip()
        if len(value) > limits[key]:
            raise ValidationError(f"{key} exceeds max length {limits[key]}")
        if value:
            cleaned[key] = value
    return cleaned


def _transition(
    order_id: int,
    requested_status: str,
    *,
    actor: User,
    capabilities,
    tracking_info=None,
    authorize=None,
) -> TransitionResult:
    requested_status = transition_service.ensure_manual_target(requested_status)
    tracking = _tracking_fields(tracking_info)

    def _op():
        order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
        if order is None:
            raise NotFoundError("Order not found")
        if authorize is not None:
            authorize(order)

        previous_status = order.status
        transition_service.ensure_allowed(previous_status, requested_status, capabilities)

        if requested_status == ORDER_SHIPPED:
            for key, value in tracking.items():
                setattr(order, key, value)

        order.status = requested_status
        stock = reconciliation_service.reconcile_transition(
            order, previous_status, requested_status, actor_user_id=actor.id
        )
        db.session.commit()
        return TransitionResult(order=order, previous_status=previous_status, stock=stock)

    return run_with_retry(_op)


def transition_order(order_id: int, requested_status, actor: User, tracking_info=None) -> TransitionResult:
    """Staff/admin status change through the validator with the actor's capabilities."""
    result = _transition(
        order_id,
        requested_status,
        actor=actor,
        capabilities=capabilities_for(actor),
        tracking_info=tracking_info,
    )
    if result.previous_status != result.order.status:
        notification_service.send_order_status_update(result.order)
    return result


def cancel_order(order_id: int, actor: User) -> TransitionResult:
    """
    Cancellation by the order's owner or by staff.

    Follows the lifecycle table for everyone: only pending and processing
    orders can be cancelled here. Overrides go through transition_order.
    """
    capabilities = capabilities_for(actor)

    def _authorize(order: Order):
        if order.user_id != actor.id and "UPDATE_ORDER_STATUS" not in capabilities:
            raise AuthorizationError("Not authorized to cancel this order")

    result = _transition(
        order_id,
        ORDER_CANCELLED,
        actor=actor,
        capabilities=capabilities - {transition_service.OVERRIDE_CAPABILITY},
        authorize=_authorize,
    )
    notification_service.send_order_cancelled(result.order)
    return result


def update_payment_status(order_id: int, payment_status, actor: User) -> Order:
    """Manual payment status override; does not touch the order status."""
    if payment_status not in MANUAL_PAYMENT_STATUSES:
        raise ValidationError(
            "Invalid payment status",
            details={"payment_status": payment_status, "allowed": list(MANUAL_PAYMENT_STATUSES)},
        )

    def _op():
        order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
        if order is None:
            raise NotFoundError("Order not found")
        order.payment_status = payment_status
        if payment_status == PAYMENT_COMPLETED and order.paid_at is None:
            order.paid_at = utcnow()
        db.session.commit()
        return order

    return run_with_retry(_op)


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def get_order_for_actor(order_id: int, actor: User) -> Order:
    order = get_order(order_id)
    if order.user_id != actor.id and "VIEW_ALL_ORDERS" not in capabilities_for(actor):
        raise AuthorizationError("Not authorized to view this order")
    return order


def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    user_id: int | None = None,
    start=None,
    end=None,
    sort: str = "newest",
    page: int = 1,
    per_page: int = 10,
) -> dict:
    if status and status not in ORDER_STATUSES:
        raise ValidationError("Invalid order status filter", details={"allowed": list(ORDER_STATUSES)})
    if payment_status and payment_status not in PAYMENT_STATUSES:
        raise ValidationError("Invalid payment status filter", details={"allowed": list(PAYMENT_STATUSES)})
    if sort not in SORT_OPTIONS:
        raise ValidationError("Invalid sort", details={"allowed": sorted(SORT_OPTIONS)})

    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at <= end)

    query = query.order_by(*SORT_OPTIONS[sort])
    return paginate(query, page, per_page, lambda o: o.to_dict(include_user=True))


def list_user_orders(user_id: int, *, status: str | None = None, page: int = 1, per_page: int = 10) -> dict:
    if status and status not in ORDER_STATUSES:
        raise ValidationError("Invalid order status filter", details={"allowed": list(ORDER_STATUSES)})
    query = db.session.query(Order).filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == status)
    query = query.order_by(*SORT_OPTIONS["newest"])
    return paginate(query, page, per_page, lambda o: o.to_dict())


def status_counts(user_id: int | None = None) -> dict[str, int]:
    query = db.session.query(Order.status, func.count(Order.id))
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    counts = {status: 0 for status in ORDER_STATUSES}
    for status, count in query.group_by(Order.status).all():
        counts[status] = int(count)
    return counts
