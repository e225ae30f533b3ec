"""Exceptions raised by the shop services.

Every service function raises one of these; ``main`` maps them onto HTTP
responses. Anything else escaping a handler is reported as a 500.
"""

from typing import Optional


class ShopError(Exception):
    """Base exception for all shop errors."""

    pass


class ValidationError(ShopError):
    """Raised when a request is missing fields or carries a bad value."""

    pass


class InvalidStatusError(ValidationError):
    """Raised when an order status is not one of the recognized values."""

    def __init__(self, status):
        self.status = status
        super().__init__("Invalid status")


class InvalidStatusTransitionError(ValidationError):
    """Raised when an order may not move from its current status to the target."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from {current} to {target}")


class InsufficientStockError(ValidationError):
    """Raised when a line item asks for more units than are in stock."""

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Insufficient stock for {product_name}")


class DuplicateEntryError(ValidationError):
    """Raised when an entry is already present, such as a wishlisted product."""

    pass


class NotFoundError(ShopError):
    """Raised when a record is absent or not owned by the caller."""

    pass


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: Optional[str] = None):
        self.product_id = product_id
        msg = "Product not found"
        if product_id:
            msg = f"Product {product_id} not found"
        super().__init__(msg)


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: Optional[str] = None):
        self.order_id = order_id
        super().__init__("Order not found")


class CustomerNotFoundError(NotFoundError):
    def __init__(self, customer_id: Optional[str] = None):
        self.customer_id = customer_id
        super().__init__("Customer not found")


class AddressNotFoundError(NotFoundError):
    def __init__(self, address_id: Optional[str] = None):
        self.address_id = address_id
        super().__init__("Address not found")


class ForbiddenError(ShopError):
    """Raised when the caller may not perform the action."""

    pass


class AuthenticationError(ShopError):
    """Raised when the bearer token is missing, expired or invalid."""

    pass
