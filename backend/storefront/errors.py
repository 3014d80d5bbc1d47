# Overview: Domain error taxonomy and JSON error responses.

"""
Storefront error taxonomy.

Every service raises a StoreError subclass; routes turn it into
{"success": false, "error": "...", "details": {...}} with the class's HTTP
status. Anything that is not a StoreError is an unexpected failure and is
answered with 500 after being logged.
"""

from __future__ import annotations

import traceback

from flask import current_app, jsonify


class StoreError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StoreError):
    """Malformed or missing input."""
    status_code = 400


class AuthenticationError(StoreError):
    status_code = 401


class AuthorizationError(StoreError):
    """Actor lacks the role, capability, or ownership."""
    status_code = 403


class NotFoundError(StoreError):
    status_code = 404


class ConflictError(StoreError):
    """Business rule conflict (invalid transition, insufficient stock)."""
    status_code = 409


class InvalidTransitionError(ConflictError):
    pass


class InsufficientStockError(ConflictError):
    pass


class ExternalServiceError(StoreError):
    """Payment gateway, mail transport, or other third-party failure."""
    status_code = 502


class UnexpectedError(StoreError):
    """Anything uncategorized; its message never carries the underlying cause."""
    status_code = 500

    def __init__(self, message: str = "Internal server error", details: dict | None = None):
        super().__init__(message, details)


def error_response(exc: StoreError):
    return jsonify(exc.to_dict()), exc.status_code


def unexpected_error_response(exc: Exception, log_message: str):
    """Log an uncategorized failure and answer with a generic 500."""
    current_app.logger.exception(log_message)
    error = UnexpectedError()
    body = error.to_dict()
    if current_app.config.get("EXPOSE_ERROR_DETAILS"):
        body["debug"] = {
            "type": type(exc).__name__,
            "message": str(exc),
            "trace": traceback.format_exception(type(exc), exc, exc.__traceback__)[-5:],
        }
    return jsonify(body), error.status_code
