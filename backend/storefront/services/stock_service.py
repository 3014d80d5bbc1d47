# Overview: Stock ledger accessor; the only code path that writes Product.stock.

"""
Stock invariants (authoritative)

- Product.stock is mutated exclusively by adjust_stock() below.
- A decrement is a single conditional UPDATE:
      UPDATE products SET stock = stock + :delta, version_id = version_id + 1
      WHERE id = :id AND stock >= :need
  "zero rows affected" is the failure signal. There is no read-then-write.
- version_id is bumped with every change so a concurrent ORM save of a stale
  Product row fails with StaleDataError instead of clobbering stock.
- Every successful change is paired with a StockMovement row in the same
  DB transaction. Callers own the commit.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..models import Product, StockMovement


MOVEMENT_ORDER_PLACED = "ORDER_PLACED"
MOVEMENT_ORDER_RELEASED = "ORDER_RELEASED"
MOVEMENT_ORDER_REHELD = "ORDER_REHELD"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"


def _expire_cached_product(product_id: int) -> None:
    # The UPDATE bypasses the identity map; drop stale attributes so the next
    # read of the instance loads the new stock and version_id.
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock", "version_id"])


def adjust_stock(product_id: int, delta: int, *, guard_min_zero: bool = True) -> bool:
    """
    Atomically add delta (may be negative) to a product's stock.

    Returns False when no row was updated: the product does not exist, or
    guard_min_zero is set and the decrement would push stock below zero.
    """
    if delta == 0:
        return db.session.get(Product, product_id) is not None

    stmt = update(Product).where(Product.id == product_id)
    if delta < 0 and guard_min_zero:
        stmt = stmt.where(Product.stock >= -delta)
    stmt = (
        stmt.values(stock=Product.stock + delta, version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount != 1:
        return False

    _expire_cached_product(product_id)
    return True


def record_movement(
    product_id: int,
    quantity_delta: int,
    movement_type: str,
    *,
    order_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product_id,
        order_id=order_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        actor_user_id=actor_user_id,
        note=note,
    )
    db.session.add(movement)
    return movement


def apply_stock_change(
    product_id: int,
    delta: int,
    movement_type: str,
    *,
    order_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> StockMovement | None:
    """Guarded adjust plus its audit row. Returns None when the guard refused."""
    if not adjust_stock(product_id, delta):
        return None
    return record_movement(
        product_id,
        delta,
        movement_type,
        order_id=order_id,
        actor_user_id=actor_user_id,
        note=note,
    )


def current_stock(product_id: int) -> int | None:
    """Stock as stored right now, bypassing any cached instance."""
    return db.session.query(Product.stock).filter(Product.id == product_id).scalar()
