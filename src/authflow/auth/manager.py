"""Auth manager -- registry and dispatcher for auth plugins.

The :class:`AuthManager` maps auth-type strings to
:class:`~authflow.auth.base.AuthPlugin` instances and exposes a single
:meth:`~AuthManager.authenticate` coroutine for the host runtime to call.

For most use cases, call :func:`create_default_manager` to get a manager
with the ``oauth2`` plugin wired to a token store, a token fetcher, and the
process's single :class:`~authflow.oauth2.callback_server.AuthCallbackManager`.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from authflow.auth.base import AuthPlugin, AuthResult
from authflow.auth.token_store import KeyValueStore
from authflow.exceptions import ConfigurationError
from authflow.host import ToastHost, WindowHost
from authflow.models import GlobalConfig
from authflow.oauth2.callback_server import AuthCallbackManager


class AuthManager:
    """Registry and dispatcher for authentication plugins.

    Args:
        callbacks: The callback listener owner shared by the registered
            plugins. Stopped by :meth:`aclose`.

    Example::

        manager = create_default_manager()
        result = await manager.authenticate("oauth2", "request-1", config)
    """

    def __init__(self, callbacks: Optional[AuthCallbackManager] = None) -> None:
        self._plugins: dict[str, AuthPlugin] = {}
        self.callbacks = callbacks or AuthCallbackManager()

    def register(self, plugin: AuthPlugin) -> None:
        """Register an auth plugin, replacing any plugin of the same type."""
        self._plugins[plugin.auth_type] = plugin

    def get_plugin(self, auth_type: str) -> AuthPlugin:
        """Retrieve a registered plugin by its auth type identifier.

        Raises:
            ConfigurationError: If no plugin is registered for *auth_type*.
        """
        plugin = self._plugins.get(auth_type)
        if plugin is None:
            available = ", ".join(sorted(self._plugins)) or "(none)"
            raise ConfigurationError(
                f"No auth plugin registered for type '{auth_type}'. "
                f"Available types: {available}"
            )
        return plugin

    async def authenticate(self, auth_type: str, context_id: str, config: Any) -> AuthResult:
        """Delegate to the plugin registered for *auth_type*."""
        plugin = self.get_plugin(auth_type)
        return await plugin.authenticate(context_id, config)

    def list_types(self) -> list[str]:
        return sorted(self._plugins.keys())

    async def aclose(self) -> None:
        """Stop any callback listener still running."""
        self.callbacks.stop()


def create_default_manager(
    settings: Optional[GlobalConfig] = None,
    *,
    window: Optional[WindowHost] = None,
    toast: Optional[ToastHost] = None,
    kv_store: Optional[KeyValueStore] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AuthManager:
    """Create an :class:`AuthManager` with the ``oauth2`` plugin registered.

    Args:
        settings: Engine settings. Defaults to
            :func:`~authflow.config.resolve_settings`.
        window: Host window collaborator. Defaults to the system browser.
        toast: Host toast collaborator. Defaults to stderr output.
        kv_store: Token persistence. Defaults to files under the data dir.
        client: HTTP client for the token endpoint.
    """
    from authflow.auth.token_store import FileKeyValueStore, TokenStore
    from authflow.config import resolve_settings
    from authflow.host import ConsoleToastHost, SystemBrowserWindowHost
    from authflow.oauth2.browser import BrowserAuthorizer
    from authflow.oauth2.fetcher import TokenFetcher
    from authflow.oauth2.plugin import OAuth2Plugin

    if settings is None:
        settings = resolve_settings()
    callbacks = AuthCallbackManager(timeout=settings.callback_timeout_seconds)
    store = TokenStore(kv_store if kv_store is not None else FileKeyValueStore())
    fetcher = TokenFetcher(
        client=client,
        timeout=settings.token_request_timeout,
        user_agent=settings.user_agent,
    )
    browser = BrowserAuthorizer(
        window=window or SystemBrowserWindowHost(),
        toast=toast or ConsoleToastHost(),
        callbacks=callbacks,
        settings=settings,
    )

    manager = AuthManager(callbacks=callbacks)
    manager.register(OAuth2Plugin(store=store, fetcher=fetcher, browser=browser))
    return manager
