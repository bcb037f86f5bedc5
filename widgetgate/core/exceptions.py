from __future__ import annotations

from typing import Any, Dict, Optional


class BaseAPIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.headers = headers
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationError(BaseAPIException):
    """Authentication failed."""
    def __init__(self, message: str = "Authentication failed", **kwargs):
        kwargs.setdefault("code", "unauthorized")
        super().__init__(message, status_code=401, **kwargs)


class AuthorizationError(BaseAPIException):
    """Authorization failed."""
    def __init__(self, message: str = "Authorization failed", **kwargs):
        kwargs.setdefault("code", "forbidden")
        super().__init__(message, status_code=403, **kwargs)


class NotFoundError(BaseAPIException):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", **kwargs):
        kwargs.setdefault("code", "not_found")
        super().__init__(message, status_code=404, **kwargs)


class ValidationError(BaseAPIException):
    """Malformed or missing input. Never reaches the stores."""
    def __init__(self, message: str = "Validation error", **kwargs):
        kwargs.setdefault("code", "validation_error")
        super().__init__(message, status_code=400, **kwargs)


class RateLimitError(BaseAPIException):
    """Rate limit exceeded."""
    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None, **kwargs):
        kwargs.setdefault("code", "rate_limited")
        if retry_after is not None:
            kwargs.setdefault("headers", {"Retry-After": str(retry_after)})
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class DatabaseError(BaseAPIException):
    """Database error."""
    def __init__(self, message: str = "Database error", **kwargs):
        kwargs.setdefault("code", "database_error")
        super().__init__(message, status_code=500, **kwargs)


class KeyCollisionError(BaseAPIException):
    """A freshly generated widget key already exists. Retry with a new key."""
    retryable = True

    def __init__(self, message: str = "Key generation collision. Please try again.", **kwargs):
        kwargs.setdefault("code", "key_collision")
        details = kwargs.pop("details", None) or {}
        details.setdefault("retryable", True)
        super().__init__(message, status_code=500, details=details, **kwargs)


class ServiceUnavailableError(BaseAPIException):
    """Service unavailable."""
    def __init__(self, message: str = "Service unavailable", **kwargs):
        kwargs.setdefault("code", "service_unavailable")
        super().__init__(message, status_code=503, **kwargs)


class StoreError(Exception):
    """A persistence read or write failed."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message
