# Overview: Typed business errors raised by the service layer.

"""
Error taxonomy

Services raise these; routes translate them with ``e.status_code`` and
``e.to_dict()``. Anything that is not a TillError is an internal failure and
is answered with a generic 500.
"""

from __future__ import annotations


class TillError(Exception):
    """Base class for business-rule violations."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(TillError):
    """400-level input problem. ``details`` maps field name -> message."""
    status_code = 400


class InsufficientFunds(TillError):
    """Payment amount exceeds what is still owed on the order."""
    status_code = 400


class NotFound(TillError):
    status_code = 404


class Forbidden(TillError):
    """Actor's role lacks the capability for the operation."""
    status_code = 403


class AccessDenied(TillError):
    """Record belongs to another tenant, store or cashier."""
    status_code = 403


class InvalidState(TillError):
    """Operation is illegal for the record's current lifecycle state."""
    status_code = 409


class InsufficientStock(TillError):
    status_code = 409


class Conflict(TillError):
    """409-level uniqueness conflict (e.g., second open shift)."""
    status_code = 409


class ExternalGatewayError(TillError):
    """Payment provider call failed; message is the provider's when available."""
    status_code = 502
