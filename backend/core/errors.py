"""Domain errors raised by the reservation and settlement code.

Routers translate these into HTTP responses; nothing below the router
layer knows about status codes.
"""


class OrderError(Exception):
    """Base class for every error the order flow raises on purpose."""


class ValidationError(OrderError):
    """A required request field is missing or malformed."""


class ShopClosedError(OrderError):
    def __init__(self, message: str = "closed"):
        super().__init__(message)


class ItemNotFoundError(OrderError):
    def __init__(self, item: str):
        self.item = item
        super().__init__(f"Item not found: {item}")


class InsufficientStockError(OrderError):
    def __init__(self, item: str, requested: int, available: int):
        self.item = item
        self.requested = requested
        self.available = available
        super().__init__(f"Not enough stock for {item}")


class SignatureVerificationError(OrderError):
    """The inbound payment event failed signature verification."""


class PersistenceError(OrderError):
    """A store write the caller depends on did not happen."""


class OrderLogError(OrderError):
    """The order log row could not be appended."""
