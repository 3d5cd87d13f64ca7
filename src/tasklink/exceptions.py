"""Exception hierarchy for tasklink.

All exceptions inherit from :class:`TasklinkError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tasklink.exit_codes`
and two recovery hints:

* ``reauthenticate`` -- the stored credentials are unusable and the user
  has to go through the consent flow again.
* ``transient`` -- the failure is temporary; repeating the call later may
  succeed.

The CLI entry point in :func:`tasklink.app.main` catches ``TasklinkError``
and exits with the appropriate code.

Subclass hierarchy::

    TasklinkError (exit 1)
    +-- ConfigurationError            (exit 2)
    +-- NoPendingFlowError            (exit 3)
    +-- ProviderAuthError             (exit 3, reauthenticate)
    |   +-- AuthorizationAbandonedError
    +-- TokenRevokedError             (exit 3, reauthenticate)
    +-- UnauthorizedError             (exit 3, reauthenticate)
    +-- NotFoundError                 (exit 4)
    +-- NoWorkspaceError              (exit 4)
    +-- ServerError                   (exit 5, transient)
    +-- NetworkError                  (exit 6, transient)
    +-- ProviderRequestError          (exit 1)
"""

from __future__ import annotations

from tasklink.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class TasklinkError(Exception):
    """Base exception for all tasklink errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE
    reauthenticate: bool = False
    transient: bool = False

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(TasklinkError):
    """Raised when the client id, redirect URI or config file is missing or invalid.

    Fails fast and is never retried.
    """

    exit_code = EXIT_INVALID_USAGE


class NoPendingFlowError(TasklinkError):
    """Raised when a code is exchanged without a pending authorization session.

    Typical causes are a stale reload of the redirect page or a duplicate
    submission of the same code.
    """

    exit_code = EXIT_AUTH_FAILURE


class ProviderAuthError(TasklinkError):
    """Raised when the provider refuses authorization.

    Covers consent denied in the popup, errors reported by the token
    endpoint, and a ``state`` that does not match the pending session.

    Args:
        message: Human-readable description.
        error: The provider's error code (e.g. ``"access_denied"``), if any.
    """

    exit_code = EXIT_AUTH_FAILURE
    reauthenticate = True

    def __init__(self, message: str, error: str | None = None):
        super().__init__(message)
        self.error = error


class AuthorizationAbandonedError(ProviderAuthError):
    """Raised when the consent window closes or the wait for it times out."""


class TokenRevokedError(TasklinkError):
    """Raised when a refresh is rejected with ``invalid_grant``.

    The refresh token has expired or was revoked; the connection must be
    treated as disconnected.
    """

    exit_code = EXIT_AUTH_FAILURE
    reauthenticate = True


class UnauthorizedError(TasklinkError):
    """Raised when the provider answers 401 and the pipeline could not recover."""

    exit_code = EXIT_AUTH_FAILURE
    reauthenticate = True


class NotFoundError(TasklinkError):
    """Raised when the provider returns HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class NoWorkspaceError(TasklinkError):
    """Raised when the current identity belongs to no workspace at all."""

    exit_code = EXIT_NOT_FOUND


class ServerError(TasklinkError):
    """Raised when the provider returns an HTTP 5xx error or asks to retry later."""

    exit_code = EXIT_SERVER_ERROR
    transient = True


class NetworkError(TasklinkError):
    """Raised on transport failures (timeout, DNS resolution, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR
    transient = True


class ProviderRequestError(TasklinkError):
    """Raised for any other 4xx answer from the provider API.

    Args:
        message: Human-readable description.
        status_code: The HTTP status code returned.
    """

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
