"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure category and is referenced by the
corresponding :class:`~oauthloop.exceptions.OAuthLoopError` subclass.
Shell wrappers can inspect the exit code to tell a user who never finished
the consent step (timeout) apart from a provider that rejected the request.

Example::

    $ oauthloop login
    $ echo $?
    4   # EXIT_TIMEOUT -- nobody completed the browser consent in time
"""

EXIT_SUCCESS = 0
"""The login completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_CONFIG = 2
"""Client credentials or settings are missing or invalid."""

EXIT_AUTH_FAILURE = 3
"""The provider denied the request, or the callback failed validation."""

EXIT_TIMEOUT = 4
"""No authorization callback arrived within the configured bound."""

EXIT_BROWSER_FAILURE = 5
"""The system browser could not be launched."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (bind, accept, connect, or HTTP status)."""

EXIT_DECODE_ERROR = 7
"""A provider endpoint returned a response that could not be decoded."""
