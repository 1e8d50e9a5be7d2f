"""
Error taxonomy for the store backend.

Every error carries the HTTP status it is translated to by the error
handler registered in ``create_app``.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for errors surfaced at the request boundary."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(StoreError):
    """Missing or malformed required field (400)."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            message = f"{field}: {message}"
        super().__init__(message)
        self.field = field


class InvalidAmount(StoreError):
    """Cart total is not strictly positive."""

    status_code = 500

    def __init__(self, message: str = "Total amount must be greater than 0"):
        super().__init__(message)


class InvalidSignature(StoreError):
    """Webhook notification failed HMAC verification (400)."""

    status_code = 400

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class GatewayError(StoreError):
    """Payment gateway call failed or returned an unusable response."""

    status_code = 500


class NotFound(StoreError):
    status_code = 404

    def __init__(self, resource_type: str, identifier: str):
        super().__init__(f"{resource_type} not found: {identifier}")


class Conflict(StoreError):
    status_code = 409


class DuplicateOrder(Conflict):
    def __init__(self, payment_id: str):
        super().__init__(f"An order already exists for payment {payment_id}")
        self.payment_id = payment_id


class UploadError(StoreError):
    """Image host rejected the upload or could not be reached (502)."""

    status_code = 502
