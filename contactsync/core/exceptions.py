"""
Custom exception classes for ContactSync Backend.
"""
from typing import Any, Dict, Optional


class ContactSyncException(Exception):
    """Base exception class for ContactSync application."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class BadRequestError(ContactSyncException):
    """Raised when a request cannot be processed as sent."""

    def __init__(
        self,
        message: str = "Bad request",
        code: str = "BAD_REQUEST",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, status_code=400, details=details)


class AuthenticationError(ContactSyncException):
    """Raised when authentication fails."""

    def __init__(
        self,
        message: str = "Authentication failed",
        code: str = "AUTHENTICATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, status_code=401, details=details)


class ValidationError(ContactSyncException):
    """Raised for validation errors."""

    def __init__(
        self,
        message: str = "Validation error",
        code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, status_code=422, details=details)


class NotFoundError(ContactSyncException):
    """Raised when a resource is not found."""

    def __init__(
        self,
        message: str = "Resource not found",
        code: str = "NOT_FOUND",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, status_code=404, details=details)


class CRMRequestError(ContactSyncException):
    """Raised when the CRM API answers with an error or cannot be reached."""

    def __init__(
        self,
        message: str = "CRM request failed",
        code: str = "CRM_REQUEST_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 502,
    ):
        super().__init__(message=message, code=code, status_code=status_code, details=details)


def map_upstream_error(error: CRMRequestError) -> ContactSyncException:
    """
    Translate an upstream CRM error into the caller-facing error kind.

    400 becomes BadRequestError, 401 becomes AuthenticationError and any
    other status passes through unchanged.

    Args:
        error: Error raised by the CRM client

    Returns:
        ContactSyncException: Error to raise to the HTTP caller
    """
    if error.status_code == 400:
        return BadRequestError(message=error.message, details=error.details)
    if error.status_code == 401:
        return AuthenticationError(message=error.message, details=error.details)
    return error
