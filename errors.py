"""Custom exceptions for the marketplace services."""
from typing import Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    pass


class InvalidInputError(MarketplaceError):
    """Raised when user input fails a format or range check."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class AuthenticationError(MarketplaceError):
    """Raised when credentials or a token are missing or invalid."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDeniedError(MarketplaceError):
    """Raised when the caller's role or ownership does not allow the action."""

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when a document does not exist."""

    def __init__(self, kind: str, doc_id: str):
        self.kind = kind
        self.doc_id = doc_id
        super().__init__(f"{kind} not found: {doc_id}")


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        super().__init__("Product", product_id)


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        super().__init__("Order", order_id)


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str):
        super().__init__("User", user_id)


class OutOfStockError(MarketplaceError):
    """Raised when an add-to-cart would exceed the product's live stock."""

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        if available <= 0:
            msg = f"Product {product_id} is out of stock"
        else:
            msg = f"Insufficient stock for {product_id}: {requested} requested, {available} available"
        super().__init__(msg)


class InsufficientStockError(MarketplaceError):
    """Raised by the pre-checkout scan for the first line that cannot be served."""

    def __init__(self, product_id: str, name: str):
        self.product_id = product_id
        self.name = name
        super().__init__(f"Insufficient stock for {name}")


class EmptyCartError(MarketplaceError):
    """Raised when checking out a cart with no lines."""

    def __init__(self):
        super().__init__("Cart is empty")


class InvalidPaymentStateError(MarketplaceError):
    """Raised when a payment step is attempted from the wrong state."""

    def __init__(self, state: str, action: str):
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} while payment is {state}")


class PaymentFailedError(MarketplaceError):
    """Raised when the mobile money provider rejects a payment."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidOrderTransitionError(MarketplaceError):
    """Raised when an order status change is not allowed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current} to {target}")


class MalformedDocumentError(MarketplaceError):
    """Raised when a stored document does not match its schema."""

    def __init__(self, collection: str, doc_id: Optional[str], reason: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Malformed {collection} document {doc_id}: {reason}")


class BackendUnavailableError(MarketplaceError):
    """Raised when the database is not configured or not reachable."""

    def __init__(self, message: str = "Database is not available"):
        super().__init__(message)
