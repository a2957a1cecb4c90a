# Overview: Error taxonomy shared by checkout, payment confirmation and order status services.

"""
Order engine errors.

Every error carries a human-readable message plus a ``details`` dict that
routes pass straight through to the JSON response.
"""


class OrderError(Exception):
    """Base class for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(OrderError):
    """Malformed or incomplete request. Raised before anything is written."""


class OrderNotFoundError(OrderError):
    """Order missing, or not owned by the requesting customer."""


class InsufficientStockError(OrderError):
    """A product lacked stock at debit time; the whole checkout was rolled back."""
    def __init__(
        self,
        product_id: int,
        product_name: str | None,
        requested: int,
        available: int | None = None,
    ):
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Insufficient stock for product {label}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.product_id = product_id


class PaymentMismatchError(OrderError):
    """Gateway record disagrees with the order (status, amount or reference)."""


class IllegalTransitionError(OrderError):
    """Operation not allowed in the order's current state."""


class PaymentGatewayError(OrderError):
    """Gateway unreachable or returned an unusable response."""
