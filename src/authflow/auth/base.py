"""Abstract base class for authentication plugins.

This module defines the two foundational types of the auth subsystem:

- :class:`AuthResult` -- a plain container for the HTTP headers and query
  parameters that an auth plugin produces for an outgoing request.
- :class:`AuthPlugin` -- the abstract base class that every authentication
  strategy must extend.

Plugins are asynchronous: authorizing may wait on a browser round or a token
endpoint, and all of that runs on the host's event loop.

See Also:
    :mod:`authflow.auth.manager` for plugin registration and dispatch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class AuthResult:
    """Container for authentication artifacts to inject into HTTP requests.

    Args:
        headers: HTTP headers to add (e.g. ``{"Authorization": "Bearer ..."}``).
        params: Query-string parameters to add.

    Example::

        result = AuthResult(headers={"Authorization": "Bearer tok123"})
        assert result.headers["Authorization"] == "Bearer tok123"
    """

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ):
        self.headers = headers or {}
        self.params = params or {}

    def __repr__(self) -> str:
        return f"AuthResult(headers={sorted(self.headers)}, params={sorted(self.params)})"


class AuthPlugin(ABC):
    """Abstract base class for authentication plugins.

    Every concrete strategy must provide:

    1. An :attr:`auth_type` property returning a unique string identifier.
    2. An :meth:`authenticate` coroutine that turns a configuration into an
       :class:`AuthResult` for the request identified by ``context_id``.

    Plugins are registered with :class:`~authflow.auth.manager.AuthManager`
    and looked up by their ``auth_type`` at runtime.
    """

    @property
    @abstractmethod
    def auth_type(self) -> str:
        """Return the unique auth type identifier this plugin handles."""
        ...

    @abstractmethod
    async def authenticate(self, context_id: str, config: Any) -> AuthResult:
        """Obtain credentials and return auth artifacts for HTTP requests.

        Args:
            context_id: Identifies the request (or request group) the
                credentials are cached for.
            config: Plugin-specific configuration.

        Raises:
            AuthflowError: If credentials cannot be obtained.
        """
        ...

    async def refresh(self, context_id: str, config: Any) -> AuthResult:
        """Refresh credentials and return updated auth artifacts.

        The default implementation simply re-authenticates.
        """
        return await self.authenticate(context_id, config)

    def validate_config(self, config: Any) -> list[str]:
        """Validate the configuration before use.

        Returns:
            A list of human-readable error messages. An empty list means the
            configuration is valid.
        """
        return []
