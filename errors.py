"""Exception taxonomy shared by the services. Only main.py turns these into responses."""
from typing import Optional


class ShopError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.message = message or self.default_message
        self.code = code
        super().__init__(self.message)


class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid request"


class AuthError(ShopError):
    status_code = 401
    default_message = "Could not validate credentials"


class ForbiddenError(ShopError):
    status_code = 403
    default_message = "Admins only"


class NotFoundError(ShopError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ShopError):
    status_code = 409
    default_message = "Resource already exists"


class PaymentDeclinedError(ShopError):
    status_code = 402
    default_message = "Your payment could not be processed. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, code="PAYMENT_DECLINED")


class PersistenceError(ShopError):
    """Store failure. The underlying detail is logged, never returned."""

    status_code = 500
    default_message = "Database operation failed"


class InternalError(ShopError):
    """Anything unanticipated. Its generic message is the body of every 5xx."""

    status_code = 500
