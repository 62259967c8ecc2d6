"""Exception hierarchy for authflow.

All exceptions inherit from :class:`AuthflowError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`authflow.exit_codes`.
Library callers (the host plugin runtime) catch these and present the message
to the user; the CLI in :func:`authflow.app.main` also exits with the code.

Subclass hierarchy::

    AuthflowError (exit 1)
    +-- ConfigurationError   (exit 2)
    +-- ProviderError        (exit 3)
    +-- NetworkError         (exit 6)
    +-- TimeoutError_        (exit 8)
    +-- UserCancelledError   (exit 130)
    +-- CallbackServerError  (exit 1)

None of these are retried automatically. Re-invoking a grant, which is gated
by a token cache miss, is the retry path.
"""

from __future__ import annotations

from authflow.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONFIGURATION_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_TIMEOUT,
)


class AuthflowError(Exception):
    """Base exception for all authflow errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(AuthflowError):
    """Raised for invalid configuration (bad URL, unparseable secret or key)."""

    exit_code = EXIT_CONFIGURATION_ERROR


class ProviderError(AuthflowError):
    """Raised when the OAuth provider answers with an ``error`` field."""

    exit_code = EXIT_AUTH_FAILURE


class NetworkError(AuthflowError):
    """Raised when the token endpoint is unreachable or returns a non-2xx status.

    Args:
        message: Human-readable error description.
        status_code: HTTP status of the failed response, if one was received.
        body: Response body text, if one was received.
    """

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TimeoutError_(AuthflowError):
    """Raised when no authorization callback arrives within the timeout.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    exit_code = EXIT_TIMEOUT


class UserCancelledError(AuthflowError):
    """Raised when the user closes the authorization window before it completes."""

    exit_code = EXIT_CANCELLED


class CallbackServerError(AuthflowError):
    """Raised when the local callback server fails to start, or is stopped or superseded."""

    exit_code = EXIT_GENERIC_FAILURE
