"""Exception hierarchy for session and token lifecycle errors.

Provides specific exception types for each failure mode so callers can
choose to retry, redirect, or degrade gracefully.
"""

from __future__ import annotations

import httpx

# Transport failures surface as httpx's own exception type, untouched.
NetworkFailure = httpx.TransportError


class SessionError(Exception):
    """Base exception for all session related errors."""

    pass


class TokenStructurallyInvalid(SessionError):
    """Raised when a token cannot be split or its payload cannot be decoded.

    Treated as an absent token by the store and the lifecycle manager; it
    never escapes the validity checker's boolean API.
    """

    pass


class AuthenticationError(SessionError):
    """Base class for fatal authentication failures.

    Every instance has already triggered the redirect-to-login side effect
    by the time it reaches the caller.
    """

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class AuthenticationTimeout(AuthenticationError):
    """Raised when polling for a token exhausts its attempt ceiling."""

    pass


class Unauthorized(AuthenticationError):
    """Raised when the server rejects the bearer token with a 401."""

    pass


class RefreshFailed(AuthenticationError):
    """Raised when a silent token refresh attempt fails."""

    pass
