"""Custom exception hierarchy for Droply."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes, logged alongside every error response."""

    # Entry errors
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    PARENT_NOT_FOUND = "PARENT_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Auth & rate limiting
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class DroplyException(Exception):
    """
    Base exception for all errors rendered to API clients.

    Carries:
    - Human-readable message (the only thing the client sees)
    - Machine-readable error code
    - HTTP status code
    - Optional details, logged server-side only
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to the client-facing JSON body.

        Details stay out of the body so storage or database internals
        never reach the caller.
        """
        return {"error": self.message}


class AuthenticationError(DroplyException):
    """No authenticated identity, or the request names a different user."""

    def __init__(self, reason: str = "missing session"):
        super().__init__(
            "Unauthorized",
            ErrorCode.UNAUTHORIZED,
            status_code=401,
            details={"reason": reason},
        )


class ValidationError(DroplyException):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class ParentFolderNotFoundError(DroplyException):
    """Parent id does not name a folder owned by the caller."""

    def __init__(self, parent_id: str):
        super().__init__(
            "Parent folder not found",
            ErrorCode.PARENT_NOT_FOUND,
            status_code=404,
            details={"parent_id": parent_id}
        )


class EntryNotFoundError(DroplyException):
    """File or folder not found, or owned by someone else."""

    def __init__(self, entry_id: str):
        super().__init__(
            "File not found",
            ErrorCode.ENTRY_NOT_FOUND,
            status_code=404,
            details={"entry_id": entry_id}
        )


class InternalError(DroplyException):
    """Unexpected failure. The message is generic; the cause is only logged."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message,
            ErrorCode.INTERNAL_ERROR,
            status_code=500,
            details=details
        )


class BlobStoreError(Exception):
    """A blob store call failed. Never rendered directly to clients."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code
