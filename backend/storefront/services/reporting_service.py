# Overview: Analytics queries for the admin dashboard.

"""
Revenue everywhere in this module is the sum of order totals excluding
cancelled and returned orders. Grouping uses SQLite strftime formats.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..errors import ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Product, User
from ..models.auth import ROLE_CUSTOMER
from ..models.catalog import PRODUCT_STATUS_ARCHIVED
from ..models.orders import ORDER_STATUSES, STOCK_RELEASING_STATUSES
from storefront.time_utils import resolve_range, start_of_day, start_of_month, to_utc_z, utcnow


GROUP_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}


def _revenue_filter():
    return Order.status.notin_(STOCK_RELEASING_STATUSES)


def _resolve(start: str | None, end: str | None) -> tuple[datetime, datetime]:
    try:
        return resolve_range(start, end)
    except ValueError as exc:
        raise ValidationError(f"Invalid date range: {exc}")


def _revenue_since(since: datetime | None) -> int:
    query = db.session.query(func.coalesce(func.sum(Order.total_cents), 0)).filter(_revenue_filter())
    if since is not None:
        query = query.filter(Order.created_at >= since)
    return int(query.scalar() or 0)


def dashboard() -> dict:
    now = utcnow()
    today = start_of_day(now)
    month = start_of_month(now)

    status_rows = db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
    distribution = {status: 0 for status in ORDER_STATUSES}
    for status, count in status_rows:
        distribution[status] = int(count)

    customers = db.session.query(User).filter(User.role == ROLE_CUSTOMER)

    return {
        "orders": {
            "total": db.session.query(func.count(Order.id)).scalar() or 0,
            "today": db.session.query(func.count(Order.id)).filter(Order.created_at >= today).scalar() or 0,
            "status_distribution": distribution,
        },
        "revenue": {
            "total_cents": _revenue_since(None),
            "month_cents": _revenue_since(month),
            "today_cents": _revenue_since(today),
        },
        "products": {
            "low_stock_count": db.session.query(func.count(Product.id)).filter(
                Product.status != PRODUCT_STATUS_ARCHIVED,
                Product.stock <= Product.stock_threshold,
            ).scalar() or 0,
        },
        "customers": {
            "total": customers.count(),
            "new_this_month": customers.filter(User.created_at >= month).count(),
        },
        "generated_at": to_utc_z(now),
    }


def sales(*, start: str | None = None, end: str | None = None, group_by: str = "day") -> dict:
    if group_by not in GROUP_FORMATS:
        raise ValidationError("group_by must be day, week, or month")
    start_dt, end_dt = _resolve(start, end)
    period_expr = func.strftime(GROUP_FORMATS[group_by], Order.created_at)

    in_range = (Order.created_at >= start_dt, Order.created_at <= end_dt, _revenue_filter())

    period_rows = (
        db.session.query(
            period_expr.label("period"),
            func.count(Order.id).label("orders"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
        )
        .filter(*in_range)
        .group_by("period")
        .order_by("period")
        .all()
    )

    category_rows = (
        db.session.query(
            Product.category.label("category"),
            func.coalesce(func.sum(OrderItem.quantity), 0).label("units"),
            func.coalesce(func.sum(OrderItem.price_cents * OrderItem.quantity), 0).label("revenue_cents"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(*in_range)
        .group_by(Product.category)
        .order_by(Product.category)
        .all()
    )

    method_rows = (
        db.session.query(
            Order.payment_method.label("payment_method"),
            func.count(Order.id).label("orders"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
        )
        .filter(*in_range)
        .group_by(Order.payment_method)
        .order_by(Order.payment_method)
        .all()
    )

    return {
        "group_by": group_by,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "periods": [
            {"period": row.period, "orders": int(row.orders), "revenue_cents": int(row.revenue_cents)}
            for row in period_rows
        ],
        "categories": [
            {"category": row.category, "units": int(row.units), "revenue_cents": int(row.revenue_cents)}
            for row in category_rows
        ],
        "payment_methods": [
            {"payment_method": row.payment_method, "orders": int(row.orders), "revenue_cents": int(row.revenue_cents)}
            for row in method_rows
        ],
    }


def products(*, limit: int = 10) -> dict:
    units = func.sum(OrderItem.quantity)
    top_rows = (
        db.session.query(
            OrderItem.product_id.label("product_id"),
            Product.name.label("name"),
            units.label("units"),
            func.sum(OrderItem.price_cents * OrderItem.quantity).label("revenue_cents"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(_revenue_filter())
        .group_by(OrderItem.product_id, Product.name)
        .order_by(units.desc(), OrderItem.product_id.asc())
        .limit(limit)
        .all()
    )

    not_archived = Product.status != PRODUCT_STATUS_ARCHIVED
    low_stock = (
        db.session.query(Product)
        .filter(not_archived, Product.stock <= Product.stock_threshold)
        .order_by(Product.stock.asc(), Product.id.asc())
        .all()
    )
    category_rows = (
        db.session.query(Product.category, func.count(Product.id), func.coalesce(func.sum(Product.stock), 0))
        .filter(not_archived)
        .group_by(Product.category)
        .order_by(Product.category)
        .all()
    )

    return {
        "top_sellers": [
            {
                "product_id": row.product_id,
                "name": row.name,
                "units": int(row.units or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in top_rows
        ],
        "low_stock": [
            {"id": p.id, "name": p.name, "stock": p.stock, "stock_threshold": p.stock_threshold}
            for p in low_stock
        ],
        "categories": [
            {"category": category, "products": int(count), "stock": int(stock)}
            for category, count, stock in category_rows
        ],
        "out_of_stock_count": db.session.query(func.count(Product.id)).filter(
            not_archived, Product.stock == 0
        ).scalar() or 0,
    }


def customers(*, limit: int = 10) -> dict:
    spent = func.coalesce(func.sum(Order.total_cents), 0)
    top_rows = (
        db.session.query(
            User.id.label("user_id"),
            User.first_name,
            User.last_name,
            User.email,
            func.count(Order.id).label("orders"),
            spent.label("spent_cents"),
        )
        .join(Order, Order.user_id == User.id)
        .filter(_revenue_filter())
        .group_by(User.id, User.first_name, User.last_name, User.email)
        .order_by(spent.desc(), User.id.asc())
        .limit(limit)
        .all()
    )

    per_customer = (
        db.session.query(Order.user_id.label("user_id"), func.count(Order.id).label("orders"))
        .group_by(Order.user_id)
        .subquery()
    )
    bucket = case(
        (per_customer.c.orders == 1, "1"),
        (per_customer.c.orders <= 3, "2-3"),
        else_="4+",
    )
    frequency_rows = (
        db.session.query(bucket.label("bucket"), func.count().label("customers"))
        .select_from(per_customer)
        .group_by("bucket")
        .all()
    )
    frequency = {"1": 0, "2-3": 0, "4+": 0}
    for row in frequency_rows:
        frequency[row.bucket] = int(row.customers)

    return {
        "top_customers": [
            {
                "user_id": row.user_id,
                "name": f"{row.first_name} {row.last_name}".strip(),
                "email": row.email,
                "orders": int(row.orders),
                "spent_cents": int(row.spent_cents),
            }
            for row in top_rows
        ],
        "order_frequency": frequency,
    }
