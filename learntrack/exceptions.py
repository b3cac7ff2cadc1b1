"""
learntrack/exceptions.py
Typed exceptions for the progress and proctoring engine.

Every failure carries an error category (machine-readable code + HTTP status)
so the API layer can render it without guessing:

- ValidationError: malformed attempt/update/config input, never retried
- NotFoundError: requested progress record does not exist
- ConflictError: compare-and-swap version mismatch, re-read and retry
- StoreUnavailableError: store timeout or driver failure, retryable
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional


class ErrorCategory:
    """Error categories with corresponding HTTP status codes."""
    VALIDATION_ERROR = ("VALIDATION_ERROR", 400)
    NOT_FOUND_ERROR = ("NOT_FOUND_ERROR", 404)
    CONFLICT_ERROR = ("CONFLICT_ERROR", 409)
    STORE_UNAVAILABLE = ("STORE_UNAVAILABLE", 503)
    SERVER_ERROR = ("SERVER_ERROR", 500)


class LearnTrackError(Exception):
    """Base exception for engine errors."""
    retryable: bool = False

    def __init__(
        self,
        message: str,
        category: tuple = ErrorCategory.SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        log_id: Optional[str] = None
    ):
        self.message = message
        self.category = category
        self.details = details or {}
        self.log_id = log_id or str(uuid.uuid4())[:8]
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(self.message)

    @property
    def error_code(self) -> str:
        return self.category[0]

    @property
    def status_code(self) -> int:
        return self.category[1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.category[0],
            "message": self.message,
            "details": self.details,
            "log_id": self.log_id,
            "timestamp": self.timestamp
        }


class ValidationError(LearnTrackError):
    """
    Invalid input data (400).

    Examples:
    - testScore outside 0-100
    - negative watch time
    - attemptNumber leaving a gap in the ledger
    """
    def __init__(self, message: str, field: Optional[str] = None, constraint: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field is not None:
            details["field"] = field
        if constraint is not None:
            details["constraint"] = constraint
        self.field = field
        self.constraint = constraint
        super().__init__(message, ErrorCategory.VALIDATION_ERROR, details)


class NotFoundError(LearnTrackError):
    """Resource not found (404)."""
    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message += f": {resource_id}"
        super().__init__(message, ErrorCategory.NOT_FOUND_ERROR, {"resource": resource, "id": resource_id})


class ConflictError(LearnTrackError):
    """Stored version moved on between read and write (409)."""
    def __init__(self, message: str, expected_version: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if expected_version is not None:
            details["expected_version"] = expected_version
        self.expected_version = expected_version
        super().__init__(message, ErrorCategory.CONFLICT_ERROR, details)


class StoreUnavailableError(LearnTrackError):
    """Ledger/progress store timed out or failed (503). Safe to retry."""
    retryable = True

    def __init__(self, message: str = "Progress store unavailable", details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("retryable", True)
        super().__init__(message, ErrorCategory.STORE_UNAVAILABLE, details)
