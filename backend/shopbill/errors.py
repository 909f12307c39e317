# Overview: Domain error taxonomy for the billing engine.

"""
Every error carries a machine-readable ``kind``, a human message and a
``details`` dict with the offending entity ids, so the UI can render an
actionable message without parsing strings.

- ValidationError: caller must correct input, never retried
- NotFoundError: entity missing or owned by another shop
- InsufficientStockError: carries product_id, requested and available
- NotEditableError: wrong status or an edit restriction applies
- ConcurrencyConflictError: stale edit, safe to retry after reloading
- PersistenceError: storage failure; nothing was committed
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for billing engine errors."""
    kind = "billing_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(BillingError):
    kind = "validation_error"
    http_status = 400


class NotFoundError(BillingError):
    kind = "not_found"
    http_status = 404


class InsufficientStockError(BillingError):
    kind = "insufficient_stock"
    http_status = 409

    def __init__(self, product_id: int, requested, available):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            details={
                "product_id": product_id,
                "requested_quantity": str(requested),
                "available_quantity": str(available) if available is not None else None,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class NotEditableError(BillingError):
    kind = "not_editable"
    http_status = 409


class ConcurrencyConflictError(BillingError):
    kind = "concurrency_conflict"
    http_status = 409
    retryable = True


class PersistenceError(BillingError):
    kind = "persistence_error"
    http_status = 500
