"""
Shared error handling for the Armory Gateway.

Every failure the gateway can surface is one of the exceptions below. Each
carries the HTTP status it maps to so the service shell can render it without
inspecting the type.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


MAX_LOGGED_BODY = 512


class ErrorResponse(BaseModel):
    """Standard error payload, used for structured logging of failures."""

    code: str
    message: str
    status_code: int
    details: Dict[str, Any] = {}


class GatewayException(Exception):
    """Base exception for Armory Gateway failures."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            status_code=self.status_code,
            details=self.details
        )

    def headers(self) -> Dict[str, str]:
        """Extra response headers for this failure."""
        return {}


class ValidationError(GatewayException):
    """Bad or missing input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(GatewayException):
    """Invalid or expired user token."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class MissingScopeError(AuthenticationError):
    """A user token lacks a scope the gateway requires."""

    status_code = 400

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"missing the required scope '{scope}'", details={"scope": scope})
        self.code = "MISSING_SCOPE"


class RateLimitError(GatewayException):
    """Local rate budget exhausted."""

    status_code = 503

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = dict(details or {})
        if retry_after is not None:
            details.setdefault("retry_after", retry_after)
        super().__init__("RATE_LIMIT_ERROR", message, details)

    def headers(self) -> Dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(max(0, int(round(self.retry_after))))}


class ExternalServiceError(GatewayException):
    """Upstream service errors."""

    status_code = 500

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class UpstreamHTTPError(ExternalServiceError):
    """Upstream answered with a non-success status."""

    def __init__(self, service: str, status_code: int, body: str = "", details: Optional[Dict[str, Any]] = None):
        self.upstream_status = status_code
        self.body = truncate_body(body)
        details = dict(details or {})
        details.update({"upstream_status": status_code, "body": self.body})
        super().__init__(service, f"unexpected response from server with status '{status_code}'", details)
        self.code = "UPSTREAM_HTTP_ERROR"

    @property
    def is_not_found(self) -> bool:
        return self.upstream_status == 404


class TransportError(ExternalServiceError):
    """Network-level failure: DNS, connect, timeout."""

    def __init__(self, service: str, message: str = "transport failure", details: Optional[Dict[str, Any]] = None):
        super().__init__(service, message, details)
        self.code = "TRANSPORT_ERROR"


class DecodeError(ExternalServiceError):
    """Upstream payload could not be decoded."""

    def __init__(self, service: str, message: str = "malformed response body", details: Optional[Dict[str, Any]] = None):
        super().__init__(service, message, details)
        self.code = "DECODE_ERROR"


def truncate_body(body: str, limit: int = MAX_LOGGED_BODY) -> str:
    """Trim an upstream body for logs and error details."""
    if len(body) <= limit:
        return body
    return body[:limit] + "..."
