"""
Base exception classes for application-wide error handling.

Every domain error raised from the service layer derives from
BaseApplicationError. Each class carries a machine-readable error code and
the HTTP status the API layer should answer with, so views never need to
translate errors by hand (see core.exception_handler).

Exception Hierarchy:
    BaseApplicationError (base, 500)
    ├── ValidationError - Input failed preconditions (400)
    ├── NotFoundError - Resource not found (404)
    ├── PermissionDeniedError - Role or ownership check failed (403)
    ├── ConflictError - State conflicts, duplicates, lost races (409)
    └── ExternalServiceError - Third-party service failures (503)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError("Amount must be positive")

    raise NotFoundError(
        "Payment not found",
        error_code="PAYMENT_NOT_FOUND",
        details={"payment_id": payment_id},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, processor data, etc.)
        http_status: Status code used when the error reaches the API layer
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Args:
            include_details: Whether to include the details payload. The
                exception handler turns this off outside DEBUG so processor
                internals never leak to clients.

        Returns:
            Dict like {"code": "...", "message": "...", "details": {...}}
        """
        result: dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if include_details and self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails in the service layer.

    For request body validation, DRF serializers are used instead. This
    exception covers business rules that need database state, e.g. a player
    that does not belong to the paying parent.
    """

    default_error_code: str = "VALIDATION"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for single-resource lookups where existence is expected. List
    queries return empty results instead.
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Example:
        if not user.is_admin and payment.parent_id != user.id:
            raise PermissionDeniedError("Not allowed to view this payment")
    """

    default_error_code: str = "UNAUTHORIZED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for duplicate entries, concurrent modification and invalid state
    transitions.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging, but keep processor internals in
    ``details`` so they are only echoed in development.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 503
