"""Numeric process exit codes used by the ``authflow`` CLI.

The engine itself never exits the process; it raises
:class:`~authflow.exceptions.AuthflowError` subclasses. Only
:func:`authflow.app.main` turns them into exit codes, following
`clig.dev <https://clig.dev/>`_ conventions.
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_CONFIGURATION_ERROR = 2
"""Invalid configuration: bad URL, missing field, unparseable key material."""

EXIT_AUTH_FAILURE = 3
"""The OAuth provider rejected the request."""

EXIT_CONNECTION_ERROR = 6
"""The token endpoint was unreachable or returned a non-2xx status."""

EXIT_TIMEOUT = 8
"""No authorization callback arrived in time."""

EXIT_CANCELLED = 130
"""The user cancelled the authorization (closed the window)."""
