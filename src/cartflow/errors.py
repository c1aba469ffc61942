"""Custom exceptions for cartflow."""

from typing import Any


class CartflowError(Exception):
    """Base exception for all cartflow errors."""

    def details(self) -> dict[str, Any]:
        """Structured fields for rendering an actionable message."""
        return {}


class ValidationError(CartflowError):
    """Raised when input is malformed (bad quantity, missing address field, ...)."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"field": self.field} if self.field else {}


class NotFoundError(CartflowError):
    """Base for lookups of unknown entities."""


class ProductNotFoundError(NotFoundError):
    """Raised when a product ID doesn't exist in the catalog."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")

    def details(self) -> dict[str, Any]:
        return {"product_id": self.product_id}


class OrderNotFoundError(NotFoundError):
    """Raised when an order ID or order number doesn't exist."""

    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        super().__init__(f"Order not found: {order_ref}")

    def details(self) -> dict[str, Any]:
        return {"order_ref": self.order_ref}


class CustomerNotFoundError(NotFoundError):
    """Raised when a customer ID doesn't exist."""

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")

    def details(self) -> dict[str, Any]:
        return {"customer_id": self.customer_id}


class CartItemNotFoundError(NotFoundError):
    """Raised when a cart has no line for the given product."""

    def __init__(self, owner_key: str, product_id: str):
        self.owner_key = owner_key
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not in cart {owner_key}")

    def details(self) -> dict[str, Any]:
        return {"owner_key": self.owner_key, "product_id": self.product_id}


class ProductUnavailableError(CartflowError):
    """Raised when a product no longer exists or is inactive at order time."""

    def __init__(self, product_id: str, reason: str = "inactive"):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Product {product_id} is not available ({reason})")

    def details(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "reason": self.reason}


class InsufficientStockError(CartflowError):
    """Raised when a line asks for more units than are in stock."""

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id}: requested {requested}, available {available}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


class InvalidTransitionError(CartflowError):
    """Raised when an order status change is not allowed."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition order from {from_status} to {to_status}")

    def details(self) -> dict[str, Any]:
        return {"from_status": self.from_status, "to_status": self.to_status}


class ConflictError(CartflowError):
    """Raised when a concurrent update won the race; retry the whole operation."""

    def __init__(self, resource: str, reason: str):
        self.resource = resource
        self.reason = reason
        super().__init__(f"Conflicting update on {resource}: {reason}")

    def details(self) -> dict[str, Any]:
        return {"resource": self.resource, "reason": self.reason}


class PermissionDeniedError(CartflowError):
    """Raised when the acting role lacks a capability or doesn't own the resource."""

    def __init__(self, role: str, action: str):
        self.role = role
        self.action = action
        super().__init__(f"Role '{role}' is not allowed to {action}")

    def details(self) -> dict[str, Any]:
        return {"role": self.role, "action": self.action}
