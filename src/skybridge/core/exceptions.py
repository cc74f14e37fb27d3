"""Application-wide exception hierarchy for Skybridge.

All custom exceptions subclass ``SkybridgeError``, enabling consistent error
handling and structured logging across the application.

Hierarchy::

    SkybridgeError
    ├── AuthenticationError      (401 at the HTTP edge)
    ├── ConfigurationError
    ├── DecryptionError
    ├── OAuthSessionError        (did: str | None)
    └── UpstreamError            (kind: UpstreamErrorKind, status_code, retry_after)
"""

from __future__ import annotations

import enum


class SkybridgeError(Exception):
    """Base class for all Skybridge exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Session and credential exceptions
# ---------------------------------------------------------------------------


class AuthenticationError(SkybridgeError):
    """Raised when a request cannot be tied to a usable remote session.

    Covers a missing, unknown, or expired session id as well as a stored
    credential that could not be restored.  Never retried locally; the HTTP
    layer converts it into a 401 response.
    """


class ConfigurationError(SkybridgeError):
    """Raised when required configuration is missing or malformed.

    The token encryption key is the main case: its absence is fatal in
    production and only logged as a warning elsewhere.
    """


class DecryptionError(SkybridgeError):
    """Raised when an at-rest ciphertext blob cannot be authenticated.

    Tag mismatch, a malformed blob, and a wrong key all raise this error.
    Partial plaintext is never returned.
    """


class OAuthSessionError(SkybridgeError):
    """Raised by the protocol client when a stored session cannot be used.

    Args:
        message: Human-readable description of the failure.
        did: Identity whose session failed to restore, refresh, or revoke.
    """

    def __init__(self, message: str, did: str | None = None) -> None:
        super().__init__(message)
        self.did = did


# ---------------------------------------------------------------------------
# Upstream (remote protocol service) exceptions
# ---------------------------------------------------------------------------


class UpstreamErrorKind(str, enum.Enum):
    """Classification assigned by the protocol client adapter.

    Downstream logic branches on this tag instead of inspecting the error
    message.
    """

    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class UpstreamError(SkybridgeError):
    """Raised when a call to the remote directory or protocol service fails.

    Args:
        message: Human-readable description of the failure.
        kind: Typed classification of the failure.
        status_code: HTTP status returned by the service, when there was one.
        retry_after: Seconds the service asked us to wait, when advertised.
        error_name: XRPC error name from the response body (e.g.
            ``"RecordNotFound"``).
    """

    def __init__(
        self,
        message: str,
        kind: UpstreamErrorKind = UpstreamErrorKind.UNKNOWN,
        status_code: int | None = None,
        retry_after: float | None = None,
        error_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        self.error_name = error_name

    @property
    def is_rate_limited(self) -> bool:
        """``True`` when the service refused the call because of a rate limit."""
        return self.kind is UpstreamErrorKind.RATE_LIMITED
