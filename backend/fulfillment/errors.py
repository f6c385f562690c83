"""
Fulfillment error taxonomy.

Every error here is recoverable by the caller: routes surface them verbatim
with a human-readable message and never let them crash the process.

State-machine violations always carry the entity's actual status so the UI
can resynchronize instead of retrying blindly.
"""

from __future__ import annotations


class FulfillmentError(Exception):
    """Base class for domain errors raised by the lifecycle services."""

    code = "FULFILLMENT_ERROR"
    http_status = 400

    def __init__(self, message: str, *, current_status: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.current_status = current_status
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.current_status is not None:
            body["current_status"] = self.current_status
        if self.details:
            body["details"] = self.details
        return body


class NotFound(FulfillmentError):
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStock(FulfillmentError):
    """Requested quantity exceeds what a batch (or a product overall) has available."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, message: str, *, product_id=None, batch_id=None, requested: int = 0, available: int = 0):
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "batch_id": batch_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.batch_id = batch_id
        self.requested = requested
        self.available = available


class AllocationFailed(FulfillmentError):
    """
    Composite failure of a multi-line allocation.

    `failures` holds the per-line InsufficientStock errors (empty when the
    cause was a storage failure or an expired deadline).
    """

    code = "ALLOCATION_FAILED"
    http_status = 409

    def __init__(self, message: str, *, failures: list[InsufficientStock] | None = None):
        self.failures = failures or []
        super().__init__(
            message,
            current_status="pending",
            details={"lines": [f.details for f in self.failures]} if self.failures else None,
        )


class InvalidTransition(FulfillmentError):
    code = "INVALID_TRANSITION"
    http_status = 400

    def __init__(self, entity: str, entity_id, current_status: str, requested: str, reason: str | None = None):
        message = f"Cannot move {entity} {entity_id} from '{current_status}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, current_status=current_status)
        self.entity = entity
        self.entity_id = entity_id
        self.requested = requested


class InvalidQuantity(FulfillmentError):
    """Returned quantity exceeds what is still returnable on a package line."""

    code = "INVALID_QUANTITY"
    http_status = 400


class DuplicateReturn(FulfillmentError):
    code = "DUPLICATE_RETURN"
    http_status = 409


class OverRestock(FulfillmentError):
    """Restock would exceed the allocated-and-not-yet-returned quantity of a batch."""

    code = "OVER_RESTOCK"
    http_status = 409
