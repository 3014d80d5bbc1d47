# Overview: Delivery regions, address validation and shipping quotes.

from __future__ import annotations

import re

from flask import current_app

from ..errors import ValidationError
from ..models.orders import SHIPPING_ADDRESS_FIELDS


REGIONS = {
    "Punjab": [
        "Lahore", "Faisalabad", "Rawalpindi", "Multan", "Gujranwala",
        "Sialkot", "Sheikhupura", "Gujrat", "Bahawalpur",
    ],
    "Sindh": ["Karachi", "Hyderabad", "Sukkur", "Larkana"],
    "AJK": ["Mirpur", "Bhimber", "Kotli", "Muzaffarabad", "Rawalakot"],
    "Khyber Pakhtunkhwa": ["Peshawar", "Mardan", "Mingora", "Kohat", "Abbottabad"],
    "Balochistan": ["Quetta", "Turbat", "Khuzdar", "Gwadar", "Hub"],
    "Islamabad Capital Territory": ["Islamabad"],
}

REMOTE_CITIES = frozenset({"Quetta", "Gwadar"})
EXPRESS_CITIES = frozenset({"Karachi", "Lahore", "Islamabad"})
REMOTE_SURCHARGE = 1.5

DELIVERY_ESTIMATES = {
    "Karachi": "2-3",
    "Lahore": "2-3",
    "Islamabad": "3-4",
}
DEFAULT_DELIVERY_ESTIMATE = "4-5"

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
PHONE_RE = re.compile(r"^\+?[\d\s-]{10,}$")
POSTAL_CODE_RE = re.compile(r"^\d{5}$")

# Client payloads use camelCase; storage uses snake_case
FIELD_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "postalCode": "postal_code",
}


def normalize_address(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Shipping address must be an object")
    address = {}
    for key, value in payload.items():
        field = FIELD_ALIASES.get(key, key)
        if field in SHIPPING_ADDRESS_FIELDS:
            address[field] = value.strip() if isinstance(value, str) else value
    return address


def check_address_fields(payload) -> dict:
    """
    Required fields plus email/phone format.

    Returns the normalized address; raises ValidationError listing every
    problem found.
    """
    address = normalize_address(payload)
    missing = [field for field in SHIPPING_ADDRESS_FIELDS if not address.get(field)]
    if missing:
        raise ValidationError(
            "Please provide all required shipping fields",
            details={"missing_fields": missing},
        )

    errors = {}
    if not EMAIL_RE.match(str(address["email"])):
        errors["email"] = "invalid email address"
    if not PHONE_RE.match(str(address["phone"])):
        errors["phone"] = "invalid phone number"
    for field in SHIPPING_ADDRESS_FIELDS:
        if not isinstance(address[field], str) or len(address[field]) > 255:
            errors[field] = "must be a string of at most 255 characters"
    if errors:
        raise ValidationError("Invalid shipping address", details=errors)

    address["email"] = address["email"].lower()
    return address


def validate_address(payload) -> dict:
    """Full delivery check: fields, postal code, and a served state/city."""
    address = check_address_fields(payload)

    if not POSTAL_CODE_RE.match(address["postal_code"]):
        raise ValidationError("Please provide a valid 5-digit postal code")

    cities = REGIONS.get(address["state"])
    if cities is None:
        raise ValidationError("Invalid state selected", details={"states": sorted(REGIONS)})
    if address["city"] not in cities:
        raise ValidationError(f"{address['city']} is not a valid city in {address['state']}")

    return address


def shipping_fee_cents(city: str | None, subtotal_cents: int | None = None) -> int:
    if subtotal_cents is not None and subtotal_cents >= current_app.config["FREE_SHIPPING_THRESHOLD_CENTS"]:
        return 0
    base = current_app.config["DEFAULT_SHIPPING_FEE_CENTS"]
    if city in REMOTE_CITIES:
        return int(round(base * REMOTE_SURCHARGE))
    return base


def quote(city: str | None, subtotal_cents: int | None = None) -> dict:
    services = ["Standard Delivery"]
    if city in EXPRESS_CITIES:
        services.append("Express Delivery")
    restrictions = []
    if city in REMOTE_CITIES:
        restrictions.append("Delivery may take longer due to remote location")

    return {
        "city": city,
        "fee_cents": shipping_fee_cents(city, subtotal_cents),
        "free_shipping_threshold_cents": current_app.config["FREE_SHIPPING_THRESHOLD_CENTS"],
        "estimated_delivery_days": DELIVERY_ESTIMATES.get(city, DEFAULT_DELIVERY_ESTIMATE),
        "services": services,
        "restrictions": restrictions,
    }


def list_cities() -> list[dict]:
    return [
        {"state": state, "cities": sorted(cities)}
        for state, cities in sorted(REGIONS.items())
    ]
