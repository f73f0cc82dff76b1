"""Error taxonomy shared by the transport, the stores and the realtime channel."""
from typing import Any, Optional


class ClientError(Exception):
    """Base class for every failure surfaced to the UI."""

    default_message = "Request failed"
    default_status = 0
    default_code: Optional[str] = None

    def __init__(
        self,
        message: Optional[str] = None,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        self.message = message or self.default_message
        self.status = self.default_status if status is None else status
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, status={self.status}, code={self.code!r})"


class NetworkError(ClientError):
    """No response reached the client."""

    default_message = "Network error"
    default_code = "NETWORK_ERROR"


class RequestTimeoutError(ClientError):
    default_message = "Request timeout"
    default_status = 408
    default_code = "TIMEOUT"


class ParseError(ClientError):
    """The server answered with something that is not a JSON envelope."""

    default_message = "Invalid response format"
    default_code = "PARSE_ERROR"


class ApiError(ClientError):
    """Server-reported failure."""


class NotFoundError(ApiError):
    default_message = "Not found"
    default_status = 404
    default_code = "NOT_FOUND"


class AuthFailedError(ApiError):
    """Terminal authentication failure: the session has been cleared."""

    default_message = "Authentication failed"
    default_status = 401
    default_code = "AUTH_FAILED"


class PreconditionError(ClientError):
    """A local precondition failed before any request was made."""

    default_message = "Precondition failed"
    default_code = "PRECONDITION_FAILED"
