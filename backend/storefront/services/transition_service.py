# Overview: Order status transition rules; the single authority on transition legality.

"""
Order lifecycle adjacency (non-privileged actors):

    pending     -> processing, cancelled
    processing  -> shipped, cancelled
    shipped     -> delivered, returned
    delivered   -> returned
    cancelled   -> (terminal)
    returned    -> (terminal)

Actors holding OVERRIDE_ORDER_TRANSITIONS may move an order between any two
statuses, terminal ones included. payment_failed and refunded are
side-channel statuses owned by payment reconciliation: never a manual
target, and absent from the table as a source, so only an override moves
an order out of them.
"""

from __future__ import annotations

from ..errors import InvalidTransitionError, ValidationError
from ..models.orders import (
    MANUAL_ORDER_STATUSES,
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_RETURNED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
)


OVERRIDE_CAPABILITY = "OVERRIDE_ORDER_TRANSITIONS"

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_PENDING: frozenset({ORDER_PROCESSING, ORDER_CANCELLED}),
    ORDER_PROCESSING: frozenset({ORDER_SHIPPED, ORDER_CANCELLED}),
    ORDER_SHIPPED: frozenset({ORDER_DELIVERED, ORDER_RETURNED}),
    ORDER_DELIVERED: frozenset({ORDER_RETURNED}),
    ORDER_CANCELLED: frozenset(),
    ORDER_RETURNED: frozenset(),
}


def allows(current_status: str, requested_status: str, capabilities=frozenset()) -> bool:
    """Pure check: may an actor with these capabilities make this move?"""
    if OVERRIDE_CAPABILITY in capabilities:
        return current_status in ORDER_STATUSES and requested_status in ORDER_STATUSES
    return requested_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


def allowed_targets(current_status: str, capabilities=frozenset()) -> list[str]:
    """Manual targets offered to this actor, in lifecycle order."""
    return [
        status for status in MANUAL_ORDER_STATUSES
        if status != current_status and allows(current_status, status, capabilities)
    ]


def ensure_manual_target(requested_status) -> str:
    if requested_status not in MANUAL_ORDER_STATUSES:
        raise ValidationError(
            "Invalid order status",
            details={"status": requested_status, "allowed": list(MANUAL_ORDER_STATUSES)},
        )
    return requested_status


def ensure_allowed(current_status: str, requested_status: str, capabilities=frozenset()) -> None:
    """Raise InvalidTransitionError (409) if the move is denied."""
    if not allows(current_status, requested_status, capabilities):
        raise InvalidTransitionError(
            f"Cannot change order status from '{current_status}' to '{requested_status}'",
            details={
                "current_status": current_status,
                "requested_status": requested_status,
                "allowed": allowed_targets(current_status, capabilities),
            },
        )
