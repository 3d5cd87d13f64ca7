"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~tasklink.exceptions.TasklinkError` subclass.
Shell wrappers can inspect the exit code to tell "log in again" apart from
"try again later" without parsing stderr.

Example::

    $ tasklink me
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- reconnect with `tasklink auth login`
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing configuration."""

EXIT_AUTH_FAILURE = 3
"""Authorization failed or the stored credentials are no longer accepted."""

EXIT_NOT_FOUND = 4
"""The requested resource (or workspace) does not exist."""

EXIT_SERVER_ERROR = 5
"""The provider returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
