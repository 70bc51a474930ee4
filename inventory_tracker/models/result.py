"""Result envelopes returned by every query service operation."""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class ErrorCode:
    """Application error codes carried in ``ErrorInfo.code``."""

    FETCH_ERROR = "FETCH_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CREATE_ERROR = "CREATE_ERROR"
    UPDATE_ERROR = "UPDATE_ERROR"
    DELETE_ERROR = "DELETE_ERROR"
    DUPLICATE_SKU = "DUPLICATE_SKU"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    SEARCH_ERROR = "SEARCH_ERROR"
    BATCH_CREATE_ERROR = "BATCH_CREATE_ERROR"
    BATCH_UPDATE_ERROR = "BATCH_UPDATE_ERROR"
    BATCH_UPDATE_PARTIAL_ERROR = "BATCH_UPDATE_PARTIAL_ERROR"
    STATS_ERROR = "STATS_ERROR"


def _plain(value: Any) -> Any:
    """Recursively convert models and envelopes to plain Python data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


@dataclass
class ErrorInfo:
    """Describes why an operation failed."""

    message: str
    code: str
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "message": self.message,
            "code": self.code,
            "details": _plain(self.details)
        }


@dataclass
class Result:
    """``{data, error}`` envelope. Exactly one side is set, except for partial batch failures."""

    data: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, data: Any) -> "Result":
        return cls(data=data, error=None)

    @classmethod
    def failure(cls, message: str, code: str, details: Any = None, data: Any = None) -> "Result":
        return cls(data=data, error=ErrorInfo(message=message, code=code, details=details))

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "data": _plain(self.data),
            "error": self.error.to_dict() if self.error else None
        }


@dataclass
class DeleteResult:
    """``{success, error}`` envelope returned by delete operations."""

    success: bool
    error: Optional[ErrorInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None
        }
