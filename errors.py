"""
Error taxonomy for the Russo API.

Every domain error carries the HTTP status it maps to and a client-facing
message. ``main.py`` turns them into JSON responses.
"""
from typing import Any, Dict, Optional


class RussoError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, **self.extra}


class ValidationError(RussoError):
    status_code = 400
    message = "Invalid request"


class NotFoundError(RussoError):
    status_code = 404
    message = "Not found"


class AuthError(RussoError):
    status_code = 401
    message = "Authentication required"


class PermissionDeniedError(RussoError):
    status_code = 403
    message = "Admin access denied"


class VerificationRequiredError(RussoError):
    status_code = 403
    message = "Phone number not verified"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, requires_verification=True)


class EmptyCartError(RussoError):
    status_code = 400
    message = "Cart is empty"


class InsufficientStockError(RussoError):
    status_code = 409

    def __init__(self, product_id: str, product_name: Optional[str] = None):
        label = product_name or product_id
        super().__init__(f"Insufficient stock for {label}", product_id=product_id)
        self.product_id = product_id
        self.product_name = product_name


class ConflictError(RussoError):
    status_code = 409
    message = "Conflict"


class DeliveryError(RussoError):
    status_code = 502
    message = "Could not send verification code"


class StorageError(RussoError):
    """A database failure. The client only ever sees the generic message."""

    status_code = 500

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__("Internal server error")
        self.cause = cause
