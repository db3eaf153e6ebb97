"""Error taxonomy and categorization for sync operations."""

from enum import Enum
from typing import Optional

import requests
from google.api_core import exceptions as gapi_exceptions
from google.auth import exceptions as auth_exceptions


class ErrorCategory(Enum):
    """Categories for different types of storage errors."""
    AUTH = "auth"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    CLIENT = "client"
    LOCAL_IO = "local_io"
    UNKNOWN = "unknown"


class GcsSyncError(Exception):
    """Base class for all gcs-sync errors."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.message = message
        self.key = key
        super().__init__(self.message)


class ConfigurationError(GcsSyncError):
    """Missing or invalid configuration. Fatal at startup."""


class PreflightError(GcsSyncError):
    """Local path or remote prefix unusable. Fatal for one pair only."""


class TransferError(GcsSyncError):
    """A single put or delete failed after all retries."""


class AuthError(GcsSyncError):
    """Credentials were rejected by the storage service."""


class TransientStorageError(GcsSyncError):
    """A retryable failure (throttling, 5xx, dropped connection)."""


_TRANSIENT_API_ERRORS = (
    gapi_exceptions.TooManyRequests,
    gapi_exceptions.InternalServerError,
    gapi_exceptions.BadGateway,
    gapi_exceptions.ServiceUnavailable,
    gapi_exceptions.GatewayTimeout,
    gapi_exceptions.DeadlineExceeded,
    gapi_exceptions.RetryError,
)


def categorize_error(exception: BaseException) -> ErrorCategory:
    """Categorize an exception into error types for better handling."""
    if isinstance(exception, AuthError):
        return ErrorCategory.AUTH
    elif isinstance(exception, TransientStorageError):
        return ErrorCategory.TRANSIENT
    elif isinstance(exception, (gapi_exceptions.Unauthorized, gapi_exceptions.Forbidden)):
        return ErrorCategory.AUTH
    elif isinstance(exception, auth_exceptions.RefreshError):
        return ErrorCategory.AUTH
    elif isinstance(exception, auth_exceptions.DefaultCredentialsError):
        return ErrorCategory.AUTH
    elif isinstance(exception, gapi_exceptions.NotFound):
        return ErrorCategory.NOT_FOUND
    elif isinstance(exception, _TRANSIENT_API_ERRORS):
        return ErrorCategory.TRANSIENT
    elif isinstance(exception, auth_exceptions.TransportError):
        return ErrorCategory.TRANSIENT
    elif isinstance(exception, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return ErrorCategory.TRANSIENT
    elif isinstance(exception, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT
    elif isinstance(exception, gapi_exceptions.ClientError):
        return ErrorCategory.CLIENT
    elif isinstance(exception, OSError):
        return ErrorCategory.LOCAL_IO
    else:
        return ErrorCategory.UNKNOWN


def is_retryable(exception: BaseException) -> bool:
    """True when retrying the same call may succeed."""
    return categorize_error(exception) is ErrorCategory.TRANSIENT
