"""
Cart Errors

Message constants shared by notifications and logs, and the exception
hierarchy used between the cart components.
"""

from typing import Optional

# Notification messages
MSG_ITEM_ADDED = "{name} added to cart!"
MSG_ITEM_REMOVED = "Item removed from cart"
MSG_QUANTITY_UPDATED = "Cart quantity updated"
MSG_CART_CLEARED = "Cart cleared"

ERROR_ADD_FAILED = "Failed to add item to cart"
ERROR_REMOVE_FAILED = "Failed to remove item from cart"
ERROR_UPDATE_FAILED = "Failed to update cart"
ERROR_CLEAR_FAILED = "Failed to clear cart"

# Gateway errors
ERROR_NOT_AUTHENTICATED = "Login required to access the remote cart"
ERROR_REMOTE_UNAVAILABLE = "Remote cart service unavailable"
ERROR_MALFORMED_RESPONSE = "Malformed cart response"

# Validation errors
ERROR_INVALID_PRODUCT = "Product must have an id, a name and a positive price"
ERROR_INVALID_QUANTITY = "Quantity must be a positive integer"

# HTTP statuses worth retrying later; every other non-2xx status is terminal
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class CartError(Exception):
    """Base class for all cart errors."""


class StorageFailure(CartError):
    """Backing key-value store could not be read or written."""


class CartValidationError(CartError, ValueError):
    """Rejected product or quantity input."""


class GatewayError(CartError):
    """Remote cart call failed.

    ``retryable`` tells the controller whether the failure is transient
    (network, timeout, overloaded server) or terminal (validation, auth).
    """

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RetryableGatewayError(GatewayError):
    retryable = True


class TerminalGatewayError(GatewayError):
    retryable = False


class NotAuthenticated(TerminalGatewayError):
    """Gateway invoked while the auth signal is anonymous."""

    def __init__(self, message: str = ERROR_NOT_AUTHENTICATED):
        super().__init__(message, status_code=None)


def is_retryable_status(status_code: int) -> bool:
    """Check if an HTTP status is a transient failure."""
    return status_code in RETRYABLE_STATUS_CODES
