"""Plugin-based authentication for authflow.

The main entry points are:

- :class:`AuthPlugin` -- abstract base class for auth strategies.
- :class:`AuthManager` -- registry that maps auth type strings to plugins.
- :func:`create_default_manager` -- factory returning an :class:`AuthManager`
  with the ``oauth2`` plugin wired up.
- :class:`TokenStore` -- cached tokens keyed by authorization context.

Typical usage::

    from authflow.auth import create_default_manager

    manager = create_default_manager()
    auth_result = await manager.authenticate("oauth2", context_id, config)
    # auth_result.headers is ready to inject into the request.
"""

from authflow.auth.base import AuthPlugin, AuthResult
from authflow.auth.manager import AuthManager, create_default_manager
from authflow.auth.token_store import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    TokenStore,
)

__all__ = [
    "AuthPlugin",
    "AuthResult",
    "AuthManager",
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "TokenStore",
    "create_default_manager",
]
