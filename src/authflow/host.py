"""Interfaces to the host application, with standalone defaults.

The engine never draws UI itself. It asks the host to open browser windows
and show toasts through the protocols below. :class:`SystemBrowserWindowHost`
and :class:`ConsoleToastHost` let the engine run outside a desktop host (the
``authflow`` CLI uses them): the system browser stands in for the external
flow and toasts go to stderr via :mod:`authflow.output`. There is no
standalone embedded window, so configurations run from the CLI must set
``external_browser.use_external_browser``.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Awaitable, Callable, Optional, Protocol

from authflow import output
from authflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

NavigateCallback = Callable[[str], Awaitable[None]]
CloseCallback = Callable[[], Awaitable[None]]


class BrowserWindow(Protocol):
    """Handle to an open embedded browser window."""

    async def close(self) -> None: ...


class WindowHost(Protocol):
    """Opens embedded windows and the system browser."""

    async def open_url(
        self,
        *,
        url: str,
        label: str,
        data_dir_key: str,
        on_navigate: NavigateCallback,
        on_close: CloseCallback,
    ) -> BrowserWindow:
        """Open *url* in an embedded window.

        ``on_navigate`` is awaited with every URL the window navigates to and
        ``on_close`` once the window closes, whether the user or
        :meth:`BrowserWindow.close` closed it. ``data_dir_key`` selects the
        window's cookie/storage partition.
        """
        ...

    async def open_external_url(self, url: str) -> None: ...


class ToastHost(Protocol):
    async def show(self, message: str, *, icon: str = "info", timeout: Optional[float] = None) -> None: ...


class SystemBrowserWindowHost:
    """:class:`WindowHost` backed by :mod:`webbrowser`."""

    async def open_url(
        self,
        *,
        url: str,
        label: str,
        data_dir_key: str,
        on_navigate: NavigateCallback,
        on_close: CloseCallback,
    ) -> BrowserWindow:
        raise ConfigurationError(
            "Embedded browser windows are not available here; "
            "set external_browser.use_external_browser to true"
        )

    async def open_external_url(self, url: str) -> None:
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            logger.warning("Could not launch a browser")
            output.warning("Could not open a browser automatically.")
        output.info(f"If the browser did not open, visit:\n  {url}")


class ConsoleToastHost:
    """:class:`ToastHost` that prints to stderr."""

    async def show(self, message: str, *, icon: str = "info", timeout: Optional[float] = None) -> None:
        if icon == "alert":
            output.warning(message)
        else:
            output.info(message)
