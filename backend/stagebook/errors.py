# backend/stagebook/errors.py
"""
Business errors raised by services and rendered by the handlers in main.py.

They subclass HTTPException so a service can raise them directly, the same way
request handlers raise HTTPException, and FastAPI maps them to the right status.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, data: Any = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(status_code=self.status_code, detail=self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidInterval(ValidationError):
    default_message = "start must be before end"


class InvalidStatus(ValidationError):
    default_message = "Invalid status"


class PricingNotConfigured(ValidationError):
    default_message = "Pricing is not configured for this service"


class InsufficientFunds(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Insufficient balance"


class PaymentVerificationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment verification failed"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"

    def __init__(self, message: Optional[str] = None, data: Any = None):
        super().__init__(message, data)
        self.headers = {"WWW-Authenticate": "Bearer"}


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class GatewayUnavailable(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment gateway is unavailable"
