"""
Fault definitions for the marketplace core.

Every fault carries the HTTP status it maps to and a stable machine code;
main.py renders them as ``{"detail": ..., "code": ...}``.
"""


class MarketplaceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Something went wrong"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationFault(MarketplaceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class StateConflictFault(MarketplaceError):
    status_code = 400
    code = "STATE_CONFLICT"


class StockFault(StateConflictFault):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, available: int):
        super().__init__(f'Insufficient stock for "{product_name}". Available: {available}')
        self.product_name = product_name
        self.available = available


class UnavailableProductFault(StateConflictFault):
    code = "PRODUCT_UNAVAILABLE"

    def __init__(self, product_name: str = ""):
        if product_name:
            msg = f'Product "{product_name}" is no longer available'
        else:
            msg = "Product not available"
        super().__init__(msg)


class TransitionFault(StateConflictFault):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, allowed=None):
        msg = f'Cannot change status from "{from_status}" to "{to_status}"'
        if allowed is not None:
            msg += f". Allowed: {', '.join(allowed) or 'none'}"
        super().__init__(msg)
        self.from_status = from_status
        self.to_status = to_status


class PaymentVerificationFault(StateConflictFault):
    code = "PAYMENT_VERIFICATION_FAILED"

    def __init__(self):
        super().__init__("Payment verification failed")


class AuthenticationFault(MarketplaceError):
    status_code = 401
    code = "UNAUTHENTICATED"


class AuthorizationFault(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundFault(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class GatewayFault(MarketplaceError):
    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"

    def __init__(self):
        super().__init__("Failed to create payment order. Please try again.")


class DatabaseUnavailableFault(MarketplaceError):
    status_code = 503
    code = "DATABASE_UNAVAILABLE"

    def __init__(self):
        super().__init__("Database not available")
