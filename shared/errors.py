"""
Shared error handling for the Weather Gateway.

Every failure a caller can observe is one of the kinds below. Each kind has
a stable machine-readable tag (``code``) and an HTTP status; the rendered
envelope is ``{status, message, error, timestamp}``.
"""

import time
from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Machine-readable error tags."""
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_AUTH_ERROR = "UPSTREAM_AUTH_ERROR"
    UPSTREAM_REQUEST_ERROR = "UPSTREAM_REQUEST_ERROR"
    UPSTREAM_EMPTY_RESPONSE = "UPSTREAM_EMPTY_RESPONSE"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def _now_millis() -> int:
    return int(time.time() * 1000)


class ErrorResponse(BaseModel):
    """Standard error response format."""

    status: int
    message: str
    error: str
    timestamp: int = Field(default_factory=_now_millis)


class WeatherGatewayException(Exception):
    """Base exception for Weather Gateway errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.kind.value

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            status=self.status_code,
            message=self.message,
            error=self.code,
        )


class InvalidRequestError(WeatherGatewayException):
    """The request is missing or carries an unusable location."""

    kind = ErrorKind.INVALID_REQUEST
    status_code = 400

    def __init__(self, message: str = "City parameter is required", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class NotFoundError(WeatherGatewayException):
    """The upstream provider does not know the location."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(self, location: str, details: Optional[Dict[str, Any]] = None):
        self.location = location
        super().__init__(f"City not found: {location}", details)


class UpstreamAuthError(WeatherGatewayException):
    """The upstream provider rejected our credentials."""

    kind = ErrorKind.UPSTREAM_AUTH_ERROR
    status_code = 401

    def __init__(self, message: str = "Weather API authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class UpstreamRequestError(WeatherGatewayException):
    """The upstream provider rejected the request with a client error."""

    kind = ErrorKind.UPSTREAM_REQUEST_ERROR

    def __init__(self, upstream_status: int, message: str, details: Optional[Dict[str, Any]] = None):
        self.upstream_status = upstream_status
        super().__init__(
            f"Invalid request to weather API: {message}",
            details,
            status_code=upstream_status,
        )


class UpstreamEmptyResponseError(WeatherGatewayException):
    """The upstream provider answered without a usable body."""

    kind = ErrorKind.UPSTREAM_EMPTY_RESPONSE
    status_code = 500

    def __init__(self, message: str = "No data received from weather API", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class UpstreamUnavailableError(WeatherGatewayException):
    """Transport failure, timeout or server-side failure upstream."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None, details: Optional[Dict[str, Any]] = None):
        self.cause = cause
        super().__init__(f"Failed to fetch weather data: {message}", details)


class RateLimitError(WeatherGatewayException):
    """Rate limiting errors."""

    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, message: str = "Too many requests. Please try again later.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class InternalUnexpectedError(WeatherGatewayException):
    """Catch-all for failures without a specific kind."""

    kind = ErrorKind.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred. Please try again later.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
