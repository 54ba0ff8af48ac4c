# Overview: Domain error taxonomy shared by services and routes.

from __future__ import annotations


class DomainError(Exception):
    """Base for every error the core raises on purpose."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        payload.update(self.details)
        return payload


class ValidationError(DomainError, ValueError):
    """400-level input problem (empty cart, missing customer fields, inconsistent totals)."""


class NotFoundError(DomainError):
    status_code = 404


class VoucherRejectedError(DomainError):
    """
    Raised by checkout when a voucher code evaluates to a rejection.

    Carries the typed rejection so callers can branch on `reason`.
    """

    def __init__(self, rejection):
        super().__init__(rejection.message, details={"reason": rejection.reason})
        self.rejection = rejection
        self.reason = rejection.reason


class VoucherExhaustedError(DomainError):
    """The guarded usage increment failed at write time: the voucher just ran out."""
    status_code = 409

    def __init__(self, code: str, reason: str = "usage_exceeded"):
        super().__init__(
            f"Voucher {code} just ran out, please remove it and try again",
            details={"reason": reason, "code": code},
        )
        self.reason = reason


class ConflictError(DomainError):
    """409-level business rule conflict (duplicate voucher code, grant already held)."""
    status_code = 409


class InsufficientStockError(DomainError):
    status_code = 409


class InvalidTransitionError(DomainError):
    """An order status change outside the allowed edges."""
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move order from '{current}' to '{requested}'",
            details={"current_status": current, "requested_status": requested},
        )
        self.current = current
        self.requested = requested


class InvalidStateError(DomainError):
    """A payment operation attempted on a payment that is no longer mutable."""
    status_code = 409

    def __init__(self, current: str, operation: str):
        super().__init__(
            f"Cannot {operation} a payment in status '{current}'",
            details={"current_status": current, "operation": operation},
        )
        self.current = current
        self.operation = operation


class ConcurrentUpdateError(DomainError):
    """The row changed underneath us (optimistic version check failed)."""
    status_code = 409


class StoreUnavailableError(DomainError):
    """Wraps a storage failure. Transient; the caller decides whether to retry."""
    status_code = 503
