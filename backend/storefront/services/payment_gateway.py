# Overview: Payment gateway webhook authentication and event parsing.

"""
Webhook signature scheme

    Payment-Signature: t=<unix seconds>,v1=<hex digest>[,v1=<hex digest>...]

digest = HMAC-SHA256(secret, "<t>.<raw request body>"). Several v1 entries
are accepted so the gateway can sign with an old and a new secret while one
is rotated. Timestamps older (or newer) than the tolerance are rejected to
bound replay of captured requests.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time

from ..errors import ValidationError


SIGNATURE_HEADER = "Payment-Signature"
DEFAULT_TOLERANCE_SECONDS = 300

EVENT_SUCCEEDED = "payment.succeeded"
EVENT_FAILED = "payment.failed"
EVENT_REFUNDED = "payment.refunded"
EVENT_CANCELLED = "payment.cancelled"

EVENT_ALIASES = {
    "payment_intent.succeeded": EVENT_SUCCEEDED,
    "payment_intent.payment_failed": EVENT_FAILED,
    "charge.refunded": EVENT_REFUNDED,
    "payment_intent.canceled": EVENT_CANCELLED,
}


class SignatureVerificationError(ValidationError):
    pass


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def generate_signature_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureVerificationError("Malformed signature timestamp")
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise SignatureVerificationError("Malformed signature header")
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: int | None = None,
) -> None:
    if not secret:
        raise SignatureVerificationError("Webhook secret is not configured")
    if not signature_header:
        raise SignatureVerificationError("Missing signature header")

    timestamp, signatures = _parse_header(signature_header)
    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise SignatureVerificationError("Signature mismatch")

    now = int(time.time()) if now is None else now
    if tolerance and abs(now - timestamp) > tolerance:
        raise SignatureVerificationError("Signature timestamp outside tolerance")


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: int | None = None,
) -> dict:
    """
    Verify and decode a webhook body.

    Returns {"id", "type" (canonical), "raw_type", "object"}. Raises
    SignatureVerificationError (400) before anything is decoded if the
    signature does not check out.
    """
    verify_signature(payload, signature_header, secret, tolerance=tolerance, now=now)

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Webhook body is not valid JSON")

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ValidationError("Webhook event requires id and type")

    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    raw_type = str(event["type"])
    return {
        "id": str(event["id"]),
        "type": EVENT_ALIASES.get(raw_type, raw_type),
        "raw_type": raw_type,
        "object": obj if isinstance(obj, dict) else {},
    }
