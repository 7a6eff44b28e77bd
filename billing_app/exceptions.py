# billing_app/exceptions.py
from typing import Any, Optional


class AppException(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Any] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class AuthenticationError(AppException):
    """Webhook signature missing or invalid. Nothing has been touched."""

    def __init__(self, message: str = "Webhook signature verification failed", details: Optional[Any] = None):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class ValidationError(AppException):
    """Malformed payload or a rejected state change."""

    def __init__(self, message: str = "Validation failed", details: Optional[Any] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
            details=details,
        )


class StorageError(AppException):
    """
    Persistence failure. Surfaces as a 5xx so the processor redelivers the
    webhook.
    """

    def __init__(self, message: str = "Database error occurred", details: Optional[Any] = None):
        super().__init__(
            code="STORAGE_ERROR",
            message=message,
            status_code=500,
            details=details,
        )


class ProcessorNotConfigured(AppException):
    def __init__(self, message: str = "Stripe not configured", status_code: int = 500):
        super().__init__(
            code="PROCESSOR_NOT_CONFIGURED",
            message=message,
            status_code=status_code,
        )


class ProcessorError(AppException):
    """A call to the Stripe API failed."""

    def __init__(self, message: str = "Payment processor error", details: Optional[Any] = None):
        super().__init__(
            code="PROCESSOR_ERROR",
            message=message,
            status_code=500,
            details=details,
        )


class BroadcastDeliveryFailure(Exception):
    """A single push-channel send failed. Logged by the hub, never surfaced over HTTP."""

    def __init__(self, connection_id: str, cause: BaseException):
        self.connection_id = connection_id
        self.cause = cause
        super().__init__(f"delivery to {connection_id} failed: {cause!r}")
