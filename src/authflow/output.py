"""Terminal output for the authflow CLI.

Token values and token details are the only things written to stdout, so
``TOKEN=$(authflow token api.json)`` captures the token and nothing else.
Browser prompts, status lines and errors go to stderr.

The stdout format is chosen once per invocation:

* ``RICH`` -- details as a two-column table. Picked automatically on an
  interactive terminal with colour enabled.
* ``PLAIN`` -- ``field<TAB>value`` lines. Picked automatically when piped,
  or when ``NO_COLOR`` / ``TERM=dumb`` / ``--no-color`` disable colour.
* ``JSON`` -- one JSON document (``--json``).

:func:`~authflow.app.main_callback` installs the process-wide
:class:`OutputManager`; everything else goes through the module-level
helpers at the bottom of this file.
"""

from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from rich.console import Console
from rich.table import Table

from authflow.models import AccessToken

MASK_VISIBLE_CHARS = 4


class OutputFormat(str, Enum):
    """Stdout formats. ``AUTO`` resolves to ``RICH`` or ``PLAIN``."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def mask_secret(value: Optional[str], visible: int = MASK_VISIBLE_CHARS) -> Optional[str]:
    """Return *value* with its middle hidden, e.g. ``eyJh...x9Qw``.

    Values too short to keep ``visible`` characters on both ends are
    replaced by asterisks entirely.
    """
    if value is None:
        return None
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def describe_token(token: AccessToken, now: Optional[datetime] = None) -> dict[str, Any]:
    """Summarise *token* for display without exposing any secret in full.

    ``preview`` is the masked access token (or ID token for an
    ``id_token``-only response); ``expires_in`` counts whole seconds left
    and stops at zero.
    """
    now = now or datetime.now(timezone.utc)
    expires_in: Optional[int] = None
    if token.expires_at is not None:
        expires_at = token.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        expires_in = max(0, int((expires_at - now).total_seconds()))
    return {
        "preview": mask_secret(token.access_token or token.id_token),
        "token_type": token.token_type,
        "scope": token.scope,
        "fetched_at": token.fetched_at.isoformat(),
        "expires_at": token.expires_at.isoformat() if token.expires_at else None,
        "expires_in": expires_in,
        "expired": token.is_expired(now),
        "has_refresh_token": token.refresh_token is not None,
        "has_id_token": token.id_token is not None,
    }


class OutputManager:
    """Writes CLI results to stdout and diagnostics to stderr.

    Args:
        format: Stdout format. ``AUTO`` follows TTY detection.
        no_color: Disable colour and Rich markup.
        quiet: Drop ``info`` and ``success`` messages. Warnings and errors
            are always shown.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet

        if format == OutputFormat.AUTO:
            self._format = (
                OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
            )
        else:
            self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(self._format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # stdout

    def print_data(self, text: str) -> None:
        """Write *text* to stdout unformatted, e.g. a bare token."""
        print(text, file=sys.stdout, flush=True)

    def print_header(self, name: str, value: str) -> None:
        """Write one HTTP header line, ready for ``curl -H``."""
        self.print_data(f"{name}: {value}")

    def print_details(self, details: Mapping[str, Any], title: Optional[str] = None) -> None:
        """Write a flat mapping of fields in the active format.

        Args:
            details: Field names to values. ``None`` renders as an empty
                cell, booleans as ``true`` / ``false``.
            title: Table caption, shown in Rich mode only.
        """
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(dict(details), indent=2, ensure_ascii=False, default=str))
        elif self._format == OutputFormat.PLAIN:
            for key, value in details.items():
                self.print_data(f"{key}\t{_plain(value)}")
        else:
            table = Table(title=title, show_header=False, box=None, pad_edge=False)
            table.add_column(style="bold cyan")
            table.add_column(overflow="fold")
            for key, value in details.items():
                table.add_row(key, _styled(key, value))
            self._stdout.print(table)

    # stderr

    def info(self, message: str) -> None:
        if self._quiet:
            return
        if self._no_color:
            print(message, file=sys.stderr, flush=True)
        else:
            self._stderr.print(message, highlight=False)

    def success(self, message: str) -> None:
        if self._quiet:
            return
        if self._no_color:
            print(message, file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[green]{message}[/green]", highlight=False)

    def warning(self, message: str) -> None:
        if self._no_color:
            print(f"Warning: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[yellow]Warning:[/yellow] {message}", highlight=False)

    def error(self, message: str) -> None:
        if self._no_color:
            print(f"Error: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[bold red]Error:[/bold red] {message}", highlight=False)


def _plain(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _styled(key: str, value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    if key == "expired" and value is True:
        return "[red]true[/red]"
    return _plain(value)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set to anything, or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Process-wide instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Drop the installed manager so the next call builds a fresh one."""
    global _output
    _output = None


def print_data(text: str) -> None:
    get_output().print_data(text)


def print_header(name: str, value: str) -> None:
    get_output().print_header(name, value)


def print_details(details: Mapping[str, Any], title: Optional[str] = None) -> None:
    get_output().print_details(details, title=title)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)
