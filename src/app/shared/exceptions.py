"""
Domain exceptions shared across the application.
"""


class AppError(Exception):
    """Base class for application errors."""

    error_code = "APP_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class NotFoundError(AppError):
    """Requested entity does not exist."""

    error_code = "NOT_FOUND"


class ValidationError(AppError):
    """Input failed domain validation."""

    error_code = "VALIDATION_ERROR"


class WebhookAuthenticationError(AppError):
    """Webhook signature missing or invalid."""

    error_code = "INVALID_SIGNATURE"


class WebhookPayloadError(AppError):
    """Webhook body could not be parsed or captured."""

    error_code = "INVALID_PAYLOAD"
