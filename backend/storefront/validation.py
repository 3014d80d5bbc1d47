from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models.catalog import PRODUCT_CATEGORIES, PRODUCT_STATUSES


# Maximum price: Rs. 9,999,999.99 (999,999,999 minor units)
MAX_PRICE_CENTS = 999_999_999
MAX_LIST_ITEMS = 20


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer parsing: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number < 1:
        raise ValidationError(f"{field} must be >= 1")
    return number


def coerce_non_negative_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0")
    return number


def _coerce_string_list(value: Any, field: str) -> list[str]:
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list of strings")
    items = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ValidationError(f"{field} entries must be non-empty strings")
        if entry.strip() not in items:
            items.append(entry.strip())
    if len(items) > MAX_LIST_ITEMS:
        raise ValidationError(f"{field} cannot have more than {MAX_LIST_ITEMS} entries")
    return items


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # JSON columns on this schema hold lists of strings (images, colors)
    if isinstance(coltype, JSON):
        return _coerce_string_list(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "price_cents", "category", "images",
        "colors", "stock", "stock_threshold", "status",
    },
    required_on_create={"name", "description", "price_cents", "category", "images", "colors"},
)

# Stock changes go through the stock endpoint, never through an edit
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_POLICY.writable_fields - {"stock"},
)


def enforce_rules_product(patch: dict) -> None:
    """Business rules that are not captured by SQLAlchemy metadata alone."""
    if "price_cents" in patch:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")

    for field in ("stock", "stock_threshold"):
        if field in patch and patch[field] < 0:
            raise ValidationError(f"{field} must be >= 0")

    if "category" in patch and patch["category"] not in PRODUCT_CATEGORIES:
        raise ValidationError(
            "Invalid category",
            details={"category": patch["category"], "allowed": list(PRODUCT_CATEGORIES)},
        )

    if "status" in patch and patch["status"] not in PRODUCT_STATUSES:
        raise ValidationError(
            "Invalid product status",
            details={"status": patch["status"], "allowed": list(PRODUCT_STATUSES)},
        )

    for field in ("images", "colors"):
        if field in patch and not patch[field]:
            raise ValidationError(f"{field} must contain at least one entry")


def parse_pagination(args, *, default_per_page: int = 12, max_per_page: int = 100) -> tuple[int, int]:
    page = coerce_positive_int(args.get("page", 1), "page")
    per_page = coerce_positive_int(args.get("per_page", args.get("limit", default_per_page)), "per_page")
    return page, min(per_page, max_per_page)
