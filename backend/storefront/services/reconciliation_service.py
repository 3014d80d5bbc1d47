# Overview: Inventory reconciliation between orders and product stock.

"""
Inventory reconciliation

Invoked explicitly by the order service inside the same DB transaction as
the order mutation it accompanies; nothing here commits.

- hold_order_stock: every line decremented with the guarded primitive. One
  refused line raises InsufficientStockError and the caller's rollback
  discards the lines already decremented.
- release_order_stock: every line incremented back. A line whose product row
  is gone is logged and reported, and its siblings still proceed.
- order.stock_held records which side of the ledger the order is on. It is
  the idempotence guard: an order that already gave its stock back never
  gives it back again.
"""

from __future__ import annotations

from flask import current_app

from ..errors import InsufficientStockError
from ..models import Order
from ..models.orders import MANUAL_ORDER_STATUSES, STOCK_RELEASING_STATUSES
from . import stock_service


STOCK_HOLDING_STATUSES = frozenset(MANUAL_ORDER_STATUSES) - STOCK_RELEASING_STATUSES


def _reserve_lines(order: Order, movement_type: str, actor_user_id: int | None) -> list[dict]:
    reserved = []
    for item in order.items:
        movement = stock_service.apply_stock_change(
            item.product_id,
            -item.quantity,
            movement_type,
            order_id=order.id,
            actor_user_id=actor_user_id,
            note=f"Order #{order.id}",
        )
        if movement is None:
            available = stock_service.current_stock(item.product_id)
            raise InsufficientStockError(
                f"Insufficient stock for {item.name}",
                details={
                    "product_id": item.product_id,
                    "requested_quantity": item.quantity,
                    "available": available if available is not None else 0,
                },
            )
        reserved.append({"product_id": item.product_id, "quantity": item.quantity})
    order.stock_held = True
    return reserved


def hold_order_stock(order: Order, actor_user_id: int | None = None) -> list[dict]:
    """Deduct a newly created order's quantities. Order must be flushed."""
    return _reserve_lines(order, stock_service.MOVEMENT_ORDER_PLACED, actor_user_id)


def rehold_order_stock(order: Order, actor_user_id: int | None = None) -> list[dict]:
    """Deduct stock again for an order brought back out of cancelled/returned."""
    reserved = _reserve_lines(order, stock_service.MOVEMENT_ORDER_REHELD, actor_user_id)
    current_app.logger.info("Order %s: stock re-held for %d line(s)", order.id, len(reserved))
    return reserved


def release_order_stock(order: Order, reason: str, actor_user_id: int | None = None) -> dict:
    """
    Return an order's quantities to stock, at most once per hold.

    Returns {"released": [...], "failed": [...], "skipped": bool}.
    """
    if not order.stock_held:
        return {"released": [], "failed": [], "skipped": True}

    released, failed = [], []
    for item in order.items:
        if stock_service.adjust_stock(item.product_id, item.quantity):
            stock_service.record_movement(
                item.product_id,
                item.quantity,
                stock_service.MOVEMENT_ORDER_RELEASED,
                order_id=order.id,
                actor_user_id=actor_user_id,
                note=f"Order #{order.id} {reason}",
            )
            released.append({"product_id": item.product_id, "quantity": item.quantity})
        else:
            current_app.logger.error(
                "Order %s: could not restore %d unit(s) of product %s (product missing)",
                order.id, item.quantity, item.product_id,
            )
            failed.append({"product_id": item.product_id, "quantity": item.quantity})

    order.stock_held = False
    current_app.logger.info(
        "Order %s %s: restored stock for %d line(s), %d failed",
        order.id, reason, len(released), len(failed),
    )
    return {"released": released, "failed": failed, "skipped": False}


def reconcile_transition(
    order: Order,
    previous_status: str,
    new_status: str,
    actor_user_id: int | None = None,
) -> dict | None:
    """
    Apply the stock side effect of a status change, if it has one.

    Entering cancelled/returned from outside that set releases stock;
    leaving it for a stock-holding status reserves stock again.
    """
    entering_release = (
        new_status in STOCK_RELEASING_STATUSES
        and previous_status not in STOCK_RELEASING_STATUSES
    )
    if entering_release and order.stock_held:
        return {"action": "released", **release_order_stock(order, new_status, actor_user_id)}

    leaving_release = (
        previous_status in STOCK_RELEASING_STATUSES
        and new_status in STOCK_HOLDING_STATUSES
    )
    if leaving_release and not order.stock_held:
        return {"action": "reheld", "reserved": rehold_order_stock(order, actor_user_id)}

    return None
