"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses.
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ConflictError(ServiceError):
    """
    Raised when an operation conflicts with existing state.

    Carries the state the caller observed as stale so it can refresh
    and retry.
    """

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        current_version: Optional[int] = None,
    ):
        self.message = message
        self.current_status = current_status
        self.current_version = current_version
        super().__init__(message)

    def to_detail(self) -> Dict[str, Any]:
        """Detail payload for HTTP 409 responses."""
        return {
            "message": self.message,
            "current_status": self.current_status,
            "current_version": self.current_version,
        }


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class PermissionDeniedError(ServiceError):
    """Raised when the caller's role or ownership does not allow an operation."""

    def __init__(self, message: str, required_role: Optional[str] = None):
        self.message = message
        self.required_role = required_role
        super().__init__(message)


class ExternalSourceError(ServiceError):
    """Raised when the external calendar source fails a read or write."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.message = message
        self.operation = operation
        super().__init__(message)


class OperationCancelledError(ServiceError):
    """
    Raised when a long-running operation stops at a cancellation point.

    Work applied before the cancellation stays committed; processed/total
    report how far the operation got.
    """

    def __init__(self, operation: str, processed: int, total: int):
        self.operation = operation
        self.processed = processed
        self.total = total
        self.message = f"{operation} cancelled after {processed}/{total} items"
        super().__init__(self.message)
