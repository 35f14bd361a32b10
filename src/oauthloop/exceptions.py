"""Exception hierarchy for oauthloop.

All exceptions inherit from :class:`OAuthLoopError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`oauthloop.exit_codes`.
The CLI commands catch ``OAuthLoopError``, report it through
:func:`oauthloop.output.error` and exit with the matching code, while
unexpected exceptions produce a crash log and exit with
:data:`EXIT_GENERIC_FAILURE`.

Every step of the flow is fail-fast: nothing in this package retries, since
authorization codes and PKCE verifiers are single-use.

Subclass hierarchy::

    OAuthLoopError (exit 1)
    +-- InvalidConfigurationError   (exit 2)
    +-- NoPortAvailableError        (exit 6)
    +-- BrowserLaunchError          (exit 5)
    +-- CallbackTimeoutError        (exit 4)
    +-- TransportError              (exit 6)
    +-- DecodeError                 (exit 7)
    +-- AuthError                   (exit 3)
        +-- AuthorizationDeniedError
        +-- StateMismatchError
        +-- MissingAuthorizationCodeError
        +-- TokenExchangeError
"""

from __future__ import annotations

from oauthloop.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_BROWSER_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_DECODE_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_CONFIG,
    EXIT_TIMEOUT,
)


class OAuthLoopError(Exception):
    """Base exception for all oauthloop errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`oauthloop.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidConfigurationError(OAuthLoopError):
    """Raised for empty client credentials, unreadable secret files, or bad settings."""

    exit_code = EXIT_INVALID_CONFIG


class NoPortAvailableError(OAuthLoopError):
    """Raised when every port in the loopback probe range is taken."""

    exit_code = EXIT_CONNECTION_ERROR


class BrowserLaunchError(OAuthLoopError):
    """Raised when the authorization URL cannot be handed to a browser."""

    exit_code = EXIT_BROWSER_FAILURE


class CallbackTimeoutError(OAuthLoopError):
    """Raised when no callback connection arrives before the deadline.

    Args:
        message: Human-readable error description.
        timeout: The bound, in seconds, that was exceeded.
    """

    exit_code = EXIT_TIMEOUT

    def __init__(self, message: str, timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


class TransportError(OAuthLoopError):
    """Raised on bind, accept, or connect failures and on non-2xx provider responses."""

    exit_code = EXIT_CONNECTION_ERROR


class DecodeError(OAuthLoopError):
    """Raised when a provider endpoint returns malformed or incomplete JSON."""

    exit_code = EXIT_DECODE_ERROR


class AuthError(OAuthLoopError):
    """Base class for failures of the authorization exchange itself."""

    exit_code = EXIT_AUTH_FAILURE


class AuthorizationDeniedError(AuthError):
    """Raised when the provider redirects back with an ``error`` parameter.

    The ``reason`` is provider-supplied and untrusted; it is reported but
    never interpreted.

    Args:
        reason: Value of the callback's ``error`` parameter.
        description: Value of ``error_description`` when present.
    """

    def __init__(self, reason: str, description: str | None = None):
        message = f"Authorization denied by provider: {reason}"
        if description:
            message += f" ({description})"
        super().__init__(message)
        self.reason = reason
        self.description = description


class StateMismatchError(AuthError):
    """Raised when the callback ``state`` differs from the one sent (possible CSRF)."""


class MissingAuthorizationCodeError(AuthError):
    """Raised when the callback carries no authorization code."""


class TokenExchangeError(AuthError):
    """Raised when the token endpoint call fails or its response cannot be decoded."""
