"""
Error taxonomy shared by the stream client, the webhook gateway and the
dispatcher, plus the mapping from an error to the text shown to the user.

Retry eligibility lives here too so the retry wrapper and the tests agree on
one classification.
"""

from __future__ import annotations

import httpx

# NetworkError kinds
TIMEOUT = "timeout"
NO_CONNECTIVITY = "no_connectivity"
HOST_UNREACHABLE = "host_unreachable"
OTHER = "other"

# ValidationError kinds
MISSING_EVENT_TYPE = "missing_event_type"
UNKNOWN_FUNCTION = "unknown_function"

RETRYABLE_NETWORK_KINDS = (TIMEOUT, NO_CONNECTIVITY, HOST_UNREACHABLE)
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class AideError(Exception):
    """Base for every error raised by the core."""


class NetworkError(AideError):
    def __init__(self, kind: str = OTHER, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(f"network error ({kind}){': ' + detail if detail else ''}")


class ApiError(AideError):
    """Completion endpoint answered with HTTP status >= 400."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}")


class DecodingError(AideError):
    """A response body could not be decoded into the expected shape."""


class ServerReportedError(AideError):
    """The webhook answered with success=false."""

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message or "server reported failure")


class ValidationError(AideError):
    def __init__(self, kind: str, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(detail or kind)


def classify_transport_error(exc: Exception) -> NetworkError:
    """Map an httpx transport exception onto a NetworkError kind."""
    if isinstance(exc, NetworkError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError(TIMEOUT, str(exc))
    if isinstance(exc, httpx.ConnectError):
        text = str(exc).lower()
        # DNS failures and "network is unreachable" surface as ConnectError
        if "name or service not known" in text or "nodename" in text or "getaddrinfo" in text:
            return NetworkError(HOST_UNREACHABLE, str(exc))
        if "unreachable" in text:
            return NetworkError(NO_CONNECTIVITY, str(exc))
        return NetworkError(HOST_UNREACHABLE, str(exc))
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)):
        # Connection lost mid-flight
        return NetworkError(NO_CONNECTIVITY, str(exc))
    return NetworkError(OTHER, str(exc))


def is_retryable(exc: BaseException) -> bool:
    """Transient connectivity failures and 429/5xx responses are retried; nothing else."""
    if isinstance(exc, NetworkError):
        return exc.kind in RETRYABLE_NETWORK_KINDS
    if isinstance(exc, ApiError):
        return exc.status_code in RETRYABLE_STATUS_CODES
    return False


def user_message(exc: BaseException) -> str:
    """Text shown to the user once retries are exhausted."""
    if isinstance(exc, NetworkError):
        if exc.kind in (NO_CONNECTIVITY, HOST_UNREACHABLE):
            return "No connection to the service. Please check your network and try again."
        if exc.kind == TIMEOUT:
            return "The request timed out. Please try again."
    if isinstance(exc, ApiError):
        if exc.status_code == 429:
            return "Rate limit reached. Please wait a moment before trying again."
        if exc.status_code == 401:
            return "Authentication failed. Please check your API key in settings."
        if 500 <= exc.status_code < 600:
            return "The service is temporarily unavailable. Please try again later."
    if isinstance(exc, ValidationError):
        if exc.kind == MISSING_EVENT_TYPE:
            return "I couldn't detect what type of event to log. Try again with meal/workout/expense."
        if exc.kind == UNKNOWN_FUNCTION:
            return f"Unknown function requested: {exc.detail or 'unnamed'}."
    if isinstance(exc, ServerReportedError) and exc.message:
        return exc.message
    return str(exc)
