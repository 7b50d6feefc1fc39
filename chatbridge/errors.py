"""
Service error taxonomy shared by every provider adapter.

Every failure an adapter can produce is one of the ``ServiceError`` subclasses
below, regardless of which provider raised it. ``kind`` is the stable tag and
``str(error)`` is the human-readable message shown to users.
"""
import json
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Normalized failure categories."""

    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE_SHAPE = "invalid_response_shape"
    DECODING_ERROR = "decoding_error"
    STREAMING_PROTOCOL_ERROR = "streaming_protocol_error"


class ServiceError(Exception):
    """Base class for all adapter failures."""

    kind: ErrorKind

    @property
    def user_message(self) -> str:
        return "An unexpected error occurred."

    def __str__(self) -> str:
        return self.user_message


class InvalidCredentialError(ServiceError):
    kind = ErrorKind.INVALID_CREDENTIAL

    @property
    def user_message(self) -> str:
        return "Invalid or missing API key. Please check your settings."


class RateLimitedError(ServiceError):
    kind = ErrorKind.RATE_LIMITED

    @property
    def user_message(self) -> str:
        return "Rate limited. Please wait a moment and try again."


class ServerError(ServiceError):
    kind = ErrorKind.SERVER_ERROR

    def __init__(self, status_code: int, message: Optional[str] = None):
        super().__init__(status_code, message)
        self.status_code = status_code
        self.message = message

    @property
    def user_message(self) -> str:
        return f"Server error ({self.status_code}): {self.message or 'Unknown error'}"


class NetworkError(ServiceError):
    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, cause: BaseException):
        super().__init__(cause)
        self.cause = cause

    @property
    def user_message(self) -> str:
        return f"Network error: {str(self.cause) or type(self.cause).__name__}"


class InvalidResponseShapeError(ServiceError):
    kind = ErrorKind.INVALID_RESPONSE_SHAPE

    @property
    def user_message(self) -> str:
        return "Received an invalid response from the server."


class DecodingError(ServiceError):
    kind = ErrorKind.DECODING_ERROR

    def __init__(self, cause: BaseException):
        super().__init__(cause)
        self.cause = cause

    @property
    def user_message(self) -> str:
        return f"Failed to decode response: {self.cause}"


class StreamingProtocolError(ServiceError):
    kind = ErrorKind.STREAMING_PROTOCOL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        return f"Streaming error: {self.message}"


def extract_error_message(body: bytes) -> Optional[str]:
    """
    Pull the message out of a provider error envelope.

    All three providers wrap failures as ``{"error": {"message": "..."}}``.
    Returns None when the body is not such an envelope.
    """
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


def error_for_status(
    status_code: int,
    body: Optional[bytes] = None,
    *,
    forbidden_is_auth: bool = False,
) -> ServiceError:
    """
    Map a non-2xx HTTP status to a ``ServiceError``.

    Args:
        status_code (int): HTTP status of the response.
        body (bytes, optional): Raw response body. Only read for statuses that
            fall through to ``ServerError``.
        forbidden_is_auth (bool): Treat 403 as a credential failure (Google).

    Returns:
        ServiceError: The error to raise or carry in a failed stream event.
    """
    if status_code == 401 or (forbidden_is_auth and status_code == 403):
        return InvalidCredentialError()
    if status_code == 429:
        return RateLimitedError()
    message = extract_error_message(body) if body else None
    return ServerError(status_code, message)
