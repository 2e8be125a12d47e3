"""
Commerce error taxonomy.

Every business error is deterministic: it is surfaced to the caller as-is and
never retried. Only transient datastore faults are retried, and only by
re-running a whole unit of work (see services/concurrency.py).

status_code is a hint for the transport layer; the core never renders HTTP.
"""

from __future__ import annotations


class CommerceError(Exception):
    """Base class for business errors raised by the commerce engine."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": type(self).__name__,
            "details": self.details,
        }


class ValidationError(CommerceError, ValueError):
    """400-level input problem. Rejected immediately, never retried."""
    status_code = 400


class NotFoundError(CommerceError, LookupError):
    status_code = 404


class ConflictError(CommerceError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""
    status_code = 409


class DuplicateAttributeValue(ConflictError):
    def __init__(self, attribute_id: int | None, value: str):
        super().__init__(
            f"Attribute value {value!r} already exists",
            details={"attribute_id": attribute_id, "value": value},
        )
        self.attribute_id = attribute_id
        self.value = value


class DuplicateVariant(ConflictError):
    def __init__(self, product_id: int, signature: str, existing_variant_id: int | None = None):
        super().__init__(
            "A variant with the same attribute values already exists",
            details={
                "product_id": product_id,
                "signature": signature,
                "existing_variant_id": existing_variant_id,
            },
        )
        self.product_id = product_id
        self.signature = signature
        self.existing_variant_id = existing_variant_id


class InsufficientStock(ConflictError):
    def __init__(self, variant_id: int, requested: int | None = None, available: int | None = None):
        super().__init__(
            f"Insufficient stock for variant {variant_id}",
            details={
                "variant_id": variant_id,
                "requested_quantity": requested,
                "available": available,
            },
        )
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class CartOwnershipConflict(CommerceError):
    """A token resolved to a cart owned by a different identity."""
    status_code = 403


class InvalidTransition(ConflictError):
    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(
            message or f"Cannot transition from {current} to {target}",
            details={"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class AlreadyVoided(ConflictError):
    def __init__(self, sale_id: int):
        super().__init__("Sale already voided", details={"sale_id": sale_id})
        self.sale_id = sale_id


class AlreadyCancelled(ConflictError):
    def __init__(self, order_id: int):
        super().__init__("Order already cancelled", details={"order_id": order_id})
        self.order_id = order_id


class EmptyCart(ValidationError):
    def __init__(self, message: str = "Cannot create an order with no lines"):
        super().__init__(message)


class EmptySale(ValidationError):
    def __init__(self, message: str = "Cannot create a sale with no lines"):
        super().__init__(message)
