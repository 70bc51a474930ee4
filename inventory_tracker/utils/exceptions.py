"""Custom exception classes for the application."""

from typing import Optional


class BaseAppException(Exception):
    """Base exception class for all application exceptions."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class StoreAPIError(BaseAppException):
    """Raised when the remote store (PostgREST) rejects a request."""

    UNIQUE_VIOLATION = "23505"
    NO_ROWS = "PGRST116"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: dict = None
    ):
        super().__init__(message, details)
        self.code = code
        self.status_code = status_code

    @property
    def is_unique_violation(self) -> bool:
        return self.code == self.UNIQUE_VIOLATION

    @property
    def is_not_found(self) -> bool:
        return self.code == self.NO_ROWS

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "details": self.details,
        }


class ServiceError(BaseAppException):
    """Raised inside the query service; converted to an error envelope at its boundary."""

    def __init__(self, message: str, code: str, details=None):
        super().__init__(message)
        self.code = code
        # Batch failures carry a list of per-item errors
        self.details = details if details is not None else {}


class ConfigurationError(BaseAppException):
    """Raised when there's a configuration error."""
    pass


class WebhookValidationError(BaseAppException):
    """Raised when webhook signature validation fails."""
    pass
