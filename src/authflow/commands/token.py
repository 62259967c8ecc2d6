"""Token commands -- obtain, inspect and discard OAuth2 tokens from the shell.

Each command reads an :class:`~authflow.models.OAuth2Config` JSON file and
works on the cache slot selected by ``--context``. Tokens are cached in the
data directory, so a second ``authflow token`` for the same context and
config returns immediately.

Typical workflow::

    authflow token api.json --context dev           # browser round on first use
    authflow token api.json --context dev --header  # "Authorization: Bearer ..."
    authflow show api.json --context dev            # expiry, scope, refresh token?
    authflow delete-token api.json --context dev
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import typer

from authflow.auth import AuthManager, create_default_manager
from authflow.config import load_oauth2_config
from authflow.exceptions import AuthflowError
from authflow.models import OAuth2Config, PkceMethod
from authflow.oauth2.pkce import code_challenge, generate_pkce
from authflow.oauth2.plugin import OAuth2Plugin
from authflow.output import (
    OutputFormat,
    describe_token,
    error,
    get_output,
    info,
    print_data,
    print_details,
    print_header,
    success,
)

T = TypeVar("T")


def _run(action: Callable[[OAuth2Plugin], Awaitable[T]]) -> T:
    """Run *action* against a fresh plugin, mapping engine errors to exit codes."""

    async def _main() -> T:
        manager: AuthManager = create_default_manager()
        try:
            plugin = manager.get_plugin("oauth2")
            assert isinstance(plugin, OAuth2Plugin)
            return await action(plugin)
        finally:
            await manager.aclose()

    try:
        return asyncio.run(_main())
    except AuthflowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def token_command(
    config_path: Path = typer.Argument(help="Path to an OAuth2 config JSON file."),
    context: str = typer.Option("default", "--context", "-c", help="Context the token is cached for."),
    header: bool = typer.Option(False, "--header", help="Print the full request header line."),
) -> None:
    """Print a valid token, authorizing first if nothing usable is cached.

    Example::

        authflow token api.json --context dev --header
    """
    config = _load(config_path)

    if header:
        result = _run(lambda plugin: plugin.authenticate(context, config))
        for name, value in result.headers.items():
            print_header(name, value)
        return

    token = _run(lambda plugin: plugin.get_access_token(context, config))
    value = token.value(config.token_name)
    if get_output().format == OutputFormat.JSON:
        print_details({config.token_name: value, **describe_token(token)})
    else:
        print_data(value or "")


def show_command(
    config_path: Path = typer.Argument(help="Path to an OAuth2 config JSON file."),
    context: str = typer.Option("default", "--context", "-c", help="Context the token is cached for."),
) -> None:
    """Show details of the cached token without authorizing."""
    config = _load(config_path)
    token = _run(lambda plugin: plugin.get_token(context, config))
    if token is None:
        info(f"No cached token for context '{context}'.")
        raise typer.Exit(code=1)
    print_details(describe_token(token), title=f"Cached token ({context})")


def delete_token_command(
    config_path: Path = typer.Argument(help="Path to an OAuth2 config JSON file."),
    context: str = typer.Option("default", "--context", "-c", help="Context the token is cached for."),
) -> None:
    """Delete the cached token so the next request authorizes again."""
    config = _load(config_path)
    deleted = _run(lambda plugin: plugin.delete_token(context, config))
    if deleted:
        success(f"Deleted cached token for context '{context}'.")
    else:
        info(f"No cached token for context '{context}'.")


def clear_session_command(
    context: str = typer.Option("default", "--context", "-c", help="Context the token is cached for."),
) -> None:
    """Forget the embedded browser's cookies for a context."""
    _run(lambda plugin: plugin.clear_window_session(context))
    success(f"Cleared browser session for context '{context}'.")


def pkce_command(
    method: PkceMethod = typer.Option(PkceMethod.S256, "--method", "-m", help="Challenge method."),
) -> None:
    """Print a fresh PKCE verifier and its challenge."""
    params = generate_pkce(method)
    print_details(
        {
            "code_verifier": params.code_verifier,
            "code_challenge": code_challenge(params.code_verifier, params.challenge_method),
            "code_challenge_method": params.challenge_method.value,
        }
    )


def _load(config_path: Path) -> OAuth2Config:
    try:
        return load_oauth2_config(config_path)
    except AuthflowError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
