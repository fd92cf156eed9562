# Overview: Error taxonomy shared by all services; each error carries a stable code.

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """
    Base class for expected, recoverable service failures.

    WHY: Callers (CLI, admin console, billing) branch on a stable code
    rather than on message text. Messages never include storage details.
    """
    code = "SERVICE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(ServiceError):
    """Referenced entity does not exist."""
    code = "NOT_FOUND"
    http_status = 404


class ForbiddenError(ServiceError):
    """Operation disallowed by policy (system role mutation, denied access)."""
    code = "FORBIDDEN"
    http_status = 403


class InvalidStateError(ServiceError):
    """Entity is not in the lifecycle state the operation requires."""
    code = "INVALID_STATE"
    http_status = 409


class InvalidInputError(ServiceError):
    """400-level input problem."""
    code = "INVALID_INPUT"


class InvalidAmountError(InvalidInputError):
    """Credit amount is zero, non-integer, or otherwise unusable."""
    code = "INVALID_AMOUNT"


class InsufficientCreditsError(InvalidAmountError):
    """Debit would drive a balance below zero while that is disallowed."""
    code = "INSUFFICIENT_CREDITS"


class ConflictError(ServiceError):
    """409-level race or uniqueness violation detected by the store."""
    code = "CONFLICT"
    http_status = 409


class InternalError(ServiceError):
    """Unexpected store failure; the original exception is logged, not exposed."""
    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str = "Internal error", details: dict[str, Any] | None = None):
        super().__init__(message, details)
