"""Exception hierarchy for the payment service."""
from typing import Any, Dict, Optional


class PaymentServiceError(Exception):
    """Base exception for all payment service errors."""


class ConfigurationError(PaymentServiceError):
    """Raised when provider or email credentials are missing or invalid."""


class GatewayError(PaymentServiceError):
    """Raised when the M-Pesa API is unreachable or rejects a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class RecordNotFoundError(PaymentServiceError, LookupError):
    """Raised when a referenced transaction or order does not exist."""


class EmailDeliveryError(PaymentServiceError):
    """Raised when the email provider refuses a message."""
