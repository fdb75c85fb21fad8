# =============================================================================
# Instant Python Client -- Error Types
# =============================================================================

from __future__ import annotations

from typing import Any


class InstantError(Exception):
    """Base exception for all Instant client errors."""


class InstantConnectionError(InstantError):
    """Connection-related errors (failed to connect, lost connection)."""


class NotConnectedError(InstantConnectionError):
    """A send was attempted while the transport is not connected."""

    def __init__(self, message: str = "Not connected to the Instant server") -> None:
        super().__init__(message)


class NotAuthenticatedError(InstantError):
    """The session has not received ``init-ok`` yet."""

    def __init__(self, message: str = "Session is not authenticated") -> None:
        super().__init__(message)


class InvalidQueryError(InstantError):
    """Malformed query payload or transaction operation."""


class DecodingError(InstantError):
    """Inbound data does not have the expected shape."""


class EncodingError(InstantError):
    """An outbound payload cannot be serialized."""


class InstantTimeoutError(InstantError):
    """Operation timed out."""


class ServerError(InstantError):
    """The server answered with an ``error`` envelope.

    Attributes:
        message: Human readable message from the server.
        hint: Optional structured hint (often the offending query or attr).
        status: HTTP-like status code, when the server sends one.
        type: Server-side error type, e.g. ``"validation-failed"``.
    """

    def __init__(
        self,
        message: str,
        hint: Any | None = None,
        *,
        status: int | None = None,
        type: str | None = None,
    ) -> None:
        self.message = message
        self.hint = hint
        self.status = status
        self.type = type
        text = message
        if hint:
            text = f"{message} (hint: {hint})"
        super().__init__(text)
