"""Drives the user-facing part of an authorization.

:class:`BrowserAuthorizer` gets the provider's redirect back to the engine in
one of two ways:

- **Embedded**: the host opens an in-app window and reports every
  navigation. A :class:`NavigationWatcher` inspects each URL and completes
  once a terminal redirect (a code or a token) shows up.
- **External**: a :class:`~authflow.oauth2.callback_server.CallbackSession`
  is started, the system browser is pointed at the provider, and the
  redirect arrives over loopback HTTP.

Either way the window or the listener is released before returning,
whether the round succeeded or not.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar
from urllib.parse import quote

import httpx

from authflow.exceptions import AuthflowError, ConfigurationError, UserCancelledError
from authflow.host import ToastHost, WindowHost
from authflow.models import CallbackType, ExternalBrowserOptions, GlobalConfig
from authflow.oauth2.callback_server import AuthCallbackManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMBEDDED_WINDOW_LABEL = "oauth-authorization-url"
OPENING_BROWSER_MESSAGE = "Opening browser for authorization..."
TOAST_TIMEOUT = 3.0


class _FlowState(enum.Enum):
    PENDING = "pending"
    SETTLED = "settled"


class NavigationWatcher(Generic[T]):
    """Single-fire result channel fed by embedded-window events.

    *extract* is called with each navigated URL. It returns ``None`` to keep
    waiting, returns a value to complete the watcher, or raises an
    :class:`~authflow.exceptions.AuthflowError` to fail it. Closing the
    window while still pending fails the watcher with
    :class:`~authflow.exceptions.UserCancelledError`. Events after the first
    outcome are ignored.

    Must be created while an event loop is running.
    """

    def __init__(self, extract: Callable[[str], Optional[T]]) -> None:
        self._extract = extract
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._state = _FlowState.PENDING
        self.window_closed = False

    @property
    def settled(self) -> bool:
        return self._state is _FlowState.SETTLED

    async def on_navigate(self, url: str) -> None:
        if self._state is _FlowState.SETTLED:
            return
        try:
            result = self._extract(url)
        except AuthflowError as exc:
            self._settle(exc=exc)
            return
        if result is not None:
            self._settle(result=result)

    async def on_close(self) -> None:
        self.window_closed = True
        if self._state is _FlowState.PENDING:
            self._settle(exc=UserCancelledError("Authorization window closed"))

    def _settle(self, result: Optional[T] = None, exc: Optional[BaseException] = None) -> None:
        self._state = _FlowState.SETTLED
        if self._future.done():
            return
        if exc is not None:
            self._future.set_exception(exc)
        else:
            self._future.set_result(result)

    async def wait(self) -> T:
        return await self._future


@dataclass(frozen=True)
class ExternalCallback:
    """Outcome of an external-browser round.

    Attributes:
        callback_url: The URL the browser delivered to the local listener.
        redirect_uri: The ``redirect_uri`` sent to the provider. The code
            exchange must repeat it exactly.
        local_redirect_uri: The listener's own address.
    """

    callback_url: str
    redirect_uri: str
    local_redirect_uri: str


def build_hosted_redirect_uri(hosted_callback_url: str, local_redirect_uri: str) -> str:
    """Return the forwarding-page URL that relays to *local_redirect_uri*."""
    separator = "&" if "?" in hosted_callback_url else "?"
    return f"{hosted_callback_url}{separator}redirect_to={quote(local_redirect_uri, safe='')}"


class BrowserAuthorizer:
    """Runs the browser part of the interactive grants.

    Args:
        window: Host window collaborator.
        toast: Host toast collaborator.
        callbacks: Owner of the local callback listener.
        settings: Callback port, path, timeout and hosted URL.
    """

    def __init__(
        self,
        window: WindowHost,
        toast: ToastHost,
        callbacks: AuthCallbackManager,
        settings: GlobalConfig,
    ) -> None:
        self._window = window
        self._toast = toast
        self._callbacks = callbacks
        self._settings = settings

    async def authorize_embedded(
        self,
        authorization_url: httpx.URL,
        data_dir_key: str,
        extract: Callable[[str], Optional[T]],
    ) -> T:
        """Open the in-app window and wait for *extract* to find a result.

        Raises:
            UserCancelledError: If the user closes the window first.
            AuthflowError: Whatever *extract* raised.
        """
        watcher: NavigationWatcher[T] = NavigationWatcher(extract)
        logger.info("Authorizing via embedded browser")
        window = await self._window.open_url(
            url=str(authorization_url),
            label=EMBEDDED_WINDOW_LABEL,
            data_dir_key=data_dir_key,
            on_navigate=watcher.on_navigate,
            on_close=watcher.on_close,
        )
        try:
            return await watcher.wait()
        finally:
            if not watcher.window_closed:
                await window.close()

    async def authorize_external(
        self,
        authorization_url: httpx.URL,
        options: ExternalBrowserOptions,
        redirect_uri: Optional[str] = None,
    ) -> ExternalCallback:
        """Send the user to the provider in the system browser and capture the redirect.

        Args:
            authorization_url: Authorization URL without ``redirect_uri``.
            options: Callback type and port.
            redirect_uri: Configured redirect URI. Used for ``localhost``
                callbacks only, instead of the listener's address.

        Raises:
            ConfigurationError: For a hosted callback without a configured
                forwarding page.
            CallbackServerError: If the listener fails or is superseded.
            TimeoutError_: If no callback arrives in time.
        """
        hosted = options.callback_type == CallbackType.HOSTED
        if hosted:
            if not self._settings.hosted_callback_url:
                raise ConfigurationError(
                    "The hosted callback type requires hosted_callback_url to be configured"
                )
            port = 0
        elif options.callback_port is not None:
            port = options.callback_port
        else:
            port = self._settings.default_callback_port

        logger.debug(
            "Starting callback server (type: %s, port: %s)",
            options.callback_type.value,
            port or "random",
        )
        session = await self._callbacks.start(
            port=port,
            path=self._settings.callback_path,
            timeout=self._settings.callback_timeout_seconds,
        )
        try:
            if hosted:
                oauth_redirect_uri = build_hosted_redirect_uri(
                    self._settings.hosted_callback_url, session.redirect_uri
                )
            else:
                oauth_redirect_uri = redirect_uri or session.redirect_uri
            logger.debug("Using redirect URI %s", oauth_redirect_uri)

            url = authorization_url.copy_set_param("redirect_uri", oauth_redirect_uri)
            # Wait before the browser opens; the URL is only kept until the
            # listener shuts down.
            pending = asyncio.ensure_future(session.wait_for_callback())
            try:
                await self._toast.show(OPENING_BROWSER_MESSAGE, icon="info", timeout=TOAST_TIMEOUT)
                logger.info("Opening external browser for authorization")
                await self._window.open_external_url(str(url))
                callback_url = await pending
            finally:
                pending.cancel()
            return ExternalCallback(
                callback_url=callback_url,
                redirect_uri=oauth_redirect_uri,
                local_redirect_uri=session.redirect_uri,
            )
        finally:
            self._callbacks.release(session)
