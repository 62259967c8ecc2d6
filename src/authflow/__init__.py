"""authflow -- OAuth2 client authorization engine for HTTP-client plugin runtimes.

This package obtains, caches, and refreshes OAuth2 access tokens for the
authorization code (with PKCE), implicit, and client credentials grants. It
coordinates a local redirect-capturing HTTP server, embedded or system browser
windows, PKCE and RFC 7523 client-assertion cryptography, and token storage.

Typical usage::

    from authflow.auth import create_default_manager
    from authflow.models import OAuth2Config

    manager = create_default_manager()
    config = OAuth2Config(grant_type="client_credentials", ...)
    result = await manager.authenticate("oauth2", "request-123", config)
    # result.headers == {"Authorization": "Bearer ..."}

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware settings and credential source resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    host: Collaborator protocols (browser windows, toasts) and defaults.
    oauth2: PKCE, client assertions, callback server, grants.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
