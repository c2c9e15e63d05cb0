"""
Error classification for remote-service failures.

Connectors raise RemoteServiceError carrying the service's error code (or an
HTTP status / transport failure). The fetcher classifies each failure into an
ErrorKind to decide whether to retry, and surfaces a FetchError with a fixed
user-facing message when it gives up.
"""

from enum import Enum
from typing import Optional, Union


class ErrorKind(str, Enum):
    """Error categories, each with a fixed user-facing message."""
    NETWORK = "network"
    PERMISSIONS = "permissions"
    DATA_CORRUPTION = "data_corruption"
    UNKNOWN = "unknown"

    @property
    def message(self) -> str:
        return USER_MESSAGES[self]

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.NETWORK


USER_MESSAGES = {
    ErrorKind.NETWORK: "Network issue, please check your connection and try again.",
    ErrorKind.PERMISSIONS: "Permission denied, please enable iCloud access.",
    ErrorKind.DATA_CORRUPTION: "Data error, please try refreshing.",
    ErrorKind.UNKNOWN: "An unexpected error occurred.",
}

# Remote error codes by kind. Both the native client codes and the web-service
# codes are listed since either may come back depending on the transport.
NETWORK_CODES = {
    "NETWORK_FAILURE",
    "NETWORK_UNAVAILABLE",
    "SERVICE_UNAVAILABLE",
    "REQUEST_RATE_LIMITED",
    "THROTTLED",
    "TRY_AGAIN_LATER",
}
PERMISSION_CODES = {
    "NOT_AUTHENTICATED",
    "PERMISSION_FAILURE",
    "AUTHENTICATION_FAILED",
    "AUTHENTICATION_REQUIRED",
    "ACCESS_DENIED",
}
DATA_CORRUPTION_CODES = {
    "UNKNOWN_ITEM",
    "INVALID_ARGUMENTS",
    "NOT_FOUND",
    "BAD_REQUEST",
}

NETWORK_HTTP_STATUSES = {429, 502, 503, 504}
PERMISSION_HTTP_STATUSES = {401, 403}


class RemoteServiceError(Exception):
    """
    Raised by connectors when the remote service rejects or fails a request.

    Attributes:
        code: Service error code (e.g. "THROTTLED"), or None if unavailable
        status_code: HTTP status code, if the failure came with one
    """

    def __init__(self, code: Optional[str], message: str = "", status_code: Optional[int] = None):
        super().__init__(message or code or "remote service error")
        self.code = code
        self.status_code = status_code


class FetchError(Exception):
    """Raised by the fetcher when a catalog fetch is aborted."""

    def __init__(self, kind: ErrorKind, detail: str = "", attempts: int = 1):
        super().__init__(detail or kind.message)
        self.kind = kind
        self.detail = detail
        self.attempts = attempts

    @property
    def user_message(self) -> str:
        return self.kind.message


def classify_error(error: Union[BaseException, str, None]) -> ErrorKind:
    """
    Classify a remote failure into an ErrorKind.

    Args:
        error: A RemoteServiceError, a raw error code string, or any exception

    Returns:
        The matching ErrorKind; UNKNOWN when nothing matches

    Examples:
        >>> classify_error("THROTTLED")
        <ErrorKind.NETWORK: 'network'>
        >>> classify_error(RemoteServiceError("ACCESS_DENIED"))
        <ErrorKind.PERMISSIONS: 'permissions'>
    """
    if isinstance(error, FetchError):
        return error.kind

    code = None
    status_code = None
    if isinstance(error, RemoteServiceError):
        code = error.code
        status_code = error.status_code
    elif isinstance(error, str):
        code = error

    if code:
        normalized = code.strip().upper()
        if normalized in NETWORK_CODES:
            return ErrorKind.NETWORK
        if normalized in PERMISSION_CODES:
            return ErrorKind.PERMISSIONS
        if normalized in DATA_CORRUPTION_CODES:
            return ErrorKind.DATA_CORRUPTION

    if status_code in NETWORK_HTTP_STATUSES:
        return ErrorKind.NETWORK
    if status_code in PERMISSION_HTTP_STATUSES:
        return ErrorKind.PERMISSIONS

    return ErrorKind.UNKNOWN
