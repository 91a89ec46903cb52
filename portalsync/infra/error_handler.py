"""Error taxonomy for the sync layer and the reconnect backoff policy."""

from typing import Optional, Tuple
from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    TRANSPORT = "transport"  # Push channel open failure, unexpected close, protocol error
    NETWORK = "network"  # Pull request could not reach the portal
    API_ERROR = "api_error"  # Portal returned an error response
    AUTH_ERROR = "auth_error"  # Portal rejected our credentials
    VALIDATION = "validation"  # Payload did not match the expected shape
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base exception for the sync layer."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = False):
        self.message = message
        self.category = category
        self.retryable = retryable
        super().__init__(message)


class TransportError(SyncError):
    """Push channel failure. Never escapes the ConnectionManager."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.TRANSPORT, retryable=True)


class MalformedFrameError(SyncError):
    """Inbound push frame could not be decoded into a Message."""
    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(message, ErrorCategory.VALIDATION, retryable=False)


class PullRequestError(SyncError):
    """Pull-path request failed.

    The core never retries these; retry policy belongs to the caller.
    """
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.API_ERROR,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        super().__init__(message, category, retryable=retryable)


def classify_http_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[int]]:
    """
    Classify an httpx error into a category.

    Args:
        error: The exception raised by httpx

    Returns:
        Tuple of (category, retryable, status_code)
    """
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code in (401, 403):
            return ErrorCategory.AUTH_ERROR, False, status_code
        if status_code == 429 or status_code >= 500:
            return ErrorCategory.API_ERROR, True, status_code
        return ErrorCategory.API_ERROR, False, status_code

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorCategory.NETWORK, True, None

    if isinstance(error, ValueError):
        # Response body was not the JSON we expected
        return ErrorCategory.VALIDATION, False, None

    return ErrorCategory.UNKNOWN, False, None


def wrap_http_error(error: Exception, operation: str) -> PullRequestError:
    """
    Wrap a pull-path failure into a PullRequestError.

    Args:
        error: Original exception
        operation: Short name of the pull operation, used in the message

    Returns:
        PullRequestError with the appropriate category
    """
    category, retryable, status_code = classify_http_error(error)
    if status_code is not None:
        message = f"{operation} failed ({status_code})"
    else:
        message = f"{operation} failed: {error}"
    return PullRequestError(message, category=category, status_code=status_code, retryable=retryable)


def compute_backoff_delay(
    attempt: int,
    initial_delay: float = 1000,
    max_delay: float = 30000,
    exponential_base: float = 2.0,
) -> float:
    """
    Delay before reconnect attempt number ``attempt`` (0-based).

    Returns ``min(initial_delay * base ** attempt, max_delay)``, in the same unit as
    ``initial_delay``. No jitter: the schedule must be reproducible.
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return min(initial_delay * (exponential_base ** attempt), max_delay)
