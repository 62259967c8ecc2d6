"""Shared test fixtures for authflow.

Provides isolated config environments, output state management, a CLI
runner, and fake host collaborators (embedded window, system browser,
toasts) for driving the interactive grants without a real browser. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from authflow.models import GlobalConfig
from authflow.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user config or cached tokens. Clears all
    AUTHFLOW_* environment variables and changes the working directory to
    tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("authflow.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "AUTHFLOW_CALLBACK_TIMEOUT",
        "AUTHFLOW_CALLBACK_PORT",
        "AUTHFLOW_HOSTED_CALLBACK_URL",
        "AUTHFLOW_TOKEN_TIMEOUT",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Settable clock for :class:`~authflow.auth.token_store.TokenStore`."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Host fakes
# ---------------------------------------------------------------------------


class FakeWindow:
    """Embedded window handle; closing it fires the host's ``on_close``."""

    def __init__(self, on_close: Callable[[], Awaitable[None]]) -> None:
        self._on_close = on_close
        self.closed = False
        self.closed_by_user = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._on_close()

    async def user_close(self) -> None:
        self.closed_by_user = True
        await self.close()


class FakeWindowHost:
    """Records what the engine opens and replays scripted browser behaviour.

    Attributes:
        navigations: URLs the embedded window "navigates" to, in order,
            right after it opens.
        close_after_navigations: Simulate the user closing the embedded
            window once the navigations have been replayed.
        on_external: Awaited with each URL opened in the system browser,
            standing in for the provider redirecting back.
    """

    def __init__(self) -> None:
        self.navigations: list[str] = []
        self.close_after_navigations = False
        self.on_external: Optional[Callable[[str], Awaitable[None]]] = None
        self.opened: list[dict[str, Any]] = []
        self.windows: list[FakeWindow] = []
        self.external_urls: list[str] = []

    async def open_url(self, *, url, label, data_dir_key, on_navigate, on_close) -> FakeWindow:
        self.opened.append({"url": url, "label": label, "data_dir_key": data_dir_key})
        window = FakeWindow(on_close)
        self.windows.append(window)
        for navigated in self.navigations:
            await on_navigate(navigated)
        if self.close_after_navigations:
            await window.user_close()
        return window

    async def open_external_url(self, url: str) -> None:
        self.external_urls.append(url)
        if self.on_external is not None:
            await self.on_external(url)


class FakeToastHost:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str, Optional[float]]] = []

    async def show(self, message: str, *, icon: str = "info", timeout: Optional[float] = None) -> None:
        self.messages.append((message, icon, timeout))


@pytest.fixture
def window_host() -> FakeWindowHost:
    return FakeWindowHost()


@pytest.fixture
def toast_host() -> FakeToastHost:
    return FakeToastHost()


@pytest.fixture
def settings() -> GlobalConfig:
    """Engine settings with an OS-assigned callback port and a short timeout."""
    return GlobalConfig(default_callback_port=0, callback_timeout_seconds=5)


# ---------------------------------------------------------------------------
# Loopback helpers
# ---------------------------------------------------------------------------


def redirect_uri_of(url: str) -> str:
    """Return the ``redirect_uri`` query parameter of an authorization URL."""
    return parse_qs(urlsplit(url).query)["redirect_uri"][0]


async def post_callback(redirect_uri: str, callback_url: str) -> httpx.Response:
    """POST *callback_url* to the local listener the way the forwarding page does."""
    async with httpx.AsyncClient(trust_env=False) as client:
        return await client.post(
            redirect_uri,
            content=json.dumps({"url": callback_url}),
            headers={"Content-Type": "application/json"},
        )


@pytest.fixture
def deliver_callback() -> Callable[[str, str], Awaitable[httpx.Response]]:
    return post_callback


@pytest.fixture
def redirect_uri_from() -> Callable[[str], str]:
    return redirect_uri_of
