"""
Checkout failure taxonomy.

Every failure of a checkout attempt surfaces as one of these. Stock failures
carry the offending item id and the available/requested quantities so the
caller can render an actionable message.
"""
from typing import Any, Dict, Optional


class CheckoutError(Exception):
    kind = "CheckoutError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class InvalidRequest(CheckoutError):
    kind = "InvalidRequest"
    status_code = 400


class ItemNotFound(CheckoutError):
    kind = "ItemNotFound"
    status_code = 404

    def __init__(self, item_id: int):
        super().__init__(f"Crop {item_id} not found")
        self.item_id = item_id

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "itemId": self.item_id}


class InsufficientStock(CheckoutError):
    kind = "InsufficientStock"
    status_code = 409

    def __init__(self, item_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for crop {item_id}. Available {available}, requested {requested}"
        )
        self.item_id = item_id
        self.available = available
        self.requested = requested

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "itemId": self.item_id,
            "available": self.available,
            "requested": self.requested,
        }


class StoreError(CheckoutError):
    """A store call failed. Driver text is kept out of the message; see __cause__."""

    kind = "StoreError"

    def __init__(self, operation: str, retryable: bool = False, message: Optional[str] = None):
        super().__init__(message or f"Database error during {operation}")
        self.operation = operation
        self.retryable = retryable

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 503 if self.retryable else 500

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "retryable": self.retryable}


class TransactionStartFailed(StoreError):
    kind = "TransactionStartFailed"

    def __init__(self, retryable: bool = False):
        super().__init__("begin", retryable, "Could not start transaction")


class CommitFailed(StoreError):
    kind = "CommitFailed"

    def __init__(self, retryable: bool = False):
        super().__init__("commit", retryable, "Checkout failed on commit")


class TransientStoreFailure(Exception):
    """Raised by a store for failures worth retrying: deadlock, serialization, lock timeout."""


class RecordNotFound(Exception):
    """A crop, cart entry or similar record does not exist (or is not owned by the caller)."""


class InvalidInput(Exception):
    """Request fields failed validation outside of checkout."""
