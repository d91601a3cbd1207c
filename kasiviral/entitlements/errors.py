"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- StoreUnavailableError: the entitlement store could not be read or written
- ActivationValidationError: activation payload rejected before touching the store
"""

from typing import Optional


class EntitlementError(Exception):
    """Base exception for entitlement-related failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StoreUnavailableError(EntitlementError):
    """
    Raised when the entitlement store fails (connection, timeout, SQL error).

    Never interpreted as "entitled" or "not entitled"; callers surface it as a
    server error so clients show a retry affordance.
    """

    def __init__(
        self,
        subject_id: str,
        operation: str,
        cause: Optional[Exception] = None,
    ):
        self.subject_id = subject_id
        self.operation = operation
        self.cause = cause
        self.error_code = "STORE_UNAVAILABLE"
        super().__init__(f"Entitlement store {operation} failed for {subject_id}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "operation": self.operation,
        }


class ActivationValidationError(EntitlementError):
    """Raised when an activation request has an unknown plan or a non-future expiry."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        self.error_code = "VALIDATION_ERROR"
        super().__init__(message)

    def to_dict(self) -> dict:
        d: dict = {"error": self.error_code, "message": str(self)}
        if self.field is not None:
            d["field"] = self.field
        return d
