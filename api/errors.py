"""
Billing error taxonomy.

Every component raises a BillingError subclass carrying a typed ErrorKind.
Turning a kind into an HTTP status and a user-facing message happens once, in
error_handlers.py.
"""

from enum import Enum


class ErrorKind(str, Enum):
    UNRESOLVABLE_AMOUNT = "unresolvable_amount"
    GATEWAY_CAPTURE_FAILED = "gateway_capture_failed"
    INVALID_TRANSITION = "invalid_transition"
    STORAGE_TRANSIENT = "storage_transient"
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    RECEIPT_REJECTED = "receipt_rejected"


class BillingError(Exception):
    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class UnresolvableAmount(BillingError):
    """Amount matches no tier/month combination within tolerance."""

    kind = ErrorKind.UNRESOLVABLE_AMOUNT

    def __init__(self, amount, message: str | None = None):
        super().__init__(message or f"Amount {amount} does not match any subscription plan")
        self.amount = amount


class GatewayCaptureFailed(BillingError):
    """Processor declined, timed out or returned an unusable capture."""

    kind = ErrorKind.GATEWAY_CAPTURE_FAILED


class InvalidTransition(BillingError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, message: str, hours_remaining: int | None = None):
        super().__init__(message)
        self.hours_remaining = hours_remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.hours_remaining is not None:
            data["hours_remaining"] = self.hours_remaining
        return data


class StorageTransient(BillingError):
    """Ledger / subscription store I/O failure. Safe to retry with backoff."""

    kind = ErrorKind.STORAGE_TRANSIENT


class InvalidRequest(BillingError):
    kind = ErrorKind.INVALID_REQUEST


class NotFound(BillingError):
    kind = ErrorKind.NOT_FOUND


class PermissionDenied(BillingError):
    kind = ErrorKind.PERMISSION_DENIED


class ReceiptRejected(BillingError):
    """Uploaded receipt has the wrong format or size."""

    kind = ErrorKind.RECEIPT_REJECTED
