"""Error types for :mod:`rxinterpals`.

REST failures are raised to the caller of the manager method that issued the
request. Gateway failures never have a caller to raise to, so they travel as
values on the connection's ``errors`` subject instead.
"""

from typing import Any


class InterpalsError(Exception):
    """Base class for all rxinterpals exceptions."""

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class AuthenticationError(InterpalsError):
    """Missing or rejected credentials (connect time, or HTTP 401)."""


class ValidationError(InterpalsError, ValueError):
    """Malformed input to a public method."""


class APIError(InterpalsError):
    """Non-2xx REST response or a failed HTTP exchange."""


class NotFoundError(APIError):
    pass


class PermissionDeniedError(APIError):
    pass


class RateLimitError(APIError):
    """HTTP 429. ``retry_after`` is the server hint in seconds, if any."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class GatewayError(InterpalsError):
    """Base class for real-time gateway failures."""


class GatewayConnectionError(GatewayError, ConnectionError):
    """Transport not open, write failure, or a failed reconnect attempt."""


class GatewayTimeoutError(GatewayError, TimeoutError):
    """Connect timeout or heartbeat (pong) timeout."""


class DispatchError(InterpalsError):
    """Wraps an exception raised while materializing a gateway event."""

    def __init__(self, exception: Exception, event_type: str = "unknown", note: str = ""):
        super().__init__(f"<{event_type}> {note}: {exception}")
        self.exception = exception
        self.event_type = event_type
        self.note = note

    def __str__(self):
        return f"<{self.event_type}> {self.note}: {self.exception}"
