"""Custom exception hierarchy for the Regis edge client."""

from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    """Failure classification surfaced to callers of the request pipeline."""
    AUTH_ERROR = "AUTH_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    UNKNOWN = "UNKNOWN"
    CANCELLED = "CANCELLED"

    def __str__(self) -> str:
        return self.value


class RegisClientError(Exception):
    """Base exception for Regis client errors."""
    pass


class ConfigurationError(RegisClientError):
    """Configuration errors."""
    pass


class QueueError(RegisClientError):
    """Offline queue persistence errors."""
    pass


class RequestError(RegisClientError):
    """A failed backend request, classified by ``kind``."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.kind.value)
        self.status_code = status_code


class AuthError(RequestError):
    """Session refresh failed or the replay was still unauthorized."""
    kind = ErrorKind.AUTH_ERROR


class RequestTimeout(RequestError):
    """The internal request budget elapsed."""
    kind = ErrorKind.TIMEOUT


class RateLimitError(RequestError):
    """Rate-limit retries were exhausted."""
    kind = ErrorKind.RATE_LIMIT


class UnknownRequestError(RequestError):
    """Unclassified transport failure, bad status or malformed body."""
    kind = ErrorKind.UNKNOWN


class StreamError(UnknownRequestError):
    """The server reported an error event inside the SSE stream."""
    pass


class RequestCancelled(RequestError):
    """Cancelled by the caller. Never shown to the user."""
    kind = ErrorKind.CANCELLED


def error_for_status(status_code: int) -> RequestError:
    """Map a final non-ok HTTP status to a request error."""
    if status_code == 401:
        return AuthError("Authentication required", status_code=status_code)
    if status_code == 429:
        return RateLimitError("Too many requests, please slow down", status_code=status_code)
    return UnknownRequestError(f"HTTP Error {status_code}", status_code=status_code)


def normalize_error(error: BaseException) -> RequestError:
    """Wrap any pipeline exception into a classified RequestError."""
    if isinstance(error, RequestError):
        return error
    if isinstance(error, httpx.TimeoutException):
        return RequestTimeout(f"Transport timeout: {error}")
    return UnknownRequestError(str(error) or type(error).__name__)
