"""Local HTTP listener that captures an OAuth redirect.

An :class:`AuthCallbackManager` owns at most one live :class:`CallbackSession`.
Starting a new session stops the previous one first, which closes its
listener and fails any pending :meth:`CallbackSession.wait_for_callback`.

The listener runs on the event loop through :func:`asyncio.start_server`
and speaks just enough HTTP/1.1 for one browser round:

- ``GET {path}`` serves a small page whose script reads the URL fragment
  (or the ``_fragment`` query parameter a hosted forwarding page puts it
  in), rebuilds the callback URL, and POSTs it back as JSON. Fragments never
  reach a server, so this is how implicit-grant tokens get here.
- ``POST {path}`` with ``{"url": "..."}`` settles the pending wait. The
  listener shuts down shortly after so the response can flush.
- Anything else is a 404 and does not touch the pending wait.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from http import HTTPStatus
from typing import AsyncIterator, Optional
from urllib.parse import urlsplit

from authflow.exceptions import CallbackServerError, TimeoutError_

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_CALLBACK_TIMEOUT = 300.0
SHUTDOWN_DELAY = 0.1
REQUEST_READ_TIMEOUT = 10.0
MAX_BODY_SIZE = 64 * 1024

FORWARDING_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Authorization</title>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
           display: flex; justify-content: center; align-items: center;
           min-height: 100vh; margin: 0; background: #f5f5f7; color: #1d1d1f; }
    .box { text-align: center; padding: 48px; }
  </style>
</head>
<body>
  <div class="box">
    <h1 id="title">Completing authorization...</h1>
    <p id="status"></p>
  </div>
  <script>
    (function () {
      var url = new URL(window.location.href);
      var fragment = url.hash ? url.hash.slice(1) : url.searchParams.get('_fragment');
      url.searchParams.delete('_fragment');
      url.hash = fragment ? '#' + fragment : '';
      fetch(url.pathname, {
        method: 'POST',
        headers: {'Content-Type': 'application/json'},
        body: JSON.stringify({url: url.toString()})
      }).then(function (resp) {
        document.getElementById('title').textContent =
          resp.ok ? 'Authorization complete' : 'Authorization failed';
        document.getElementById('status').textContent =
          resp.ok ? 'You can close this window.' : 'Please return to the application.';
        if (resp.ok) { setTimeout(function () { window.close(); }, 2000); }
      }).catch(function (err) {
        document.getElementById('title').textContent = 'Authorization failed';
        document.getElementById('status').textContent = String(err);
      });
    })();
  </script>
</body>
</html>
"""


async def _read_request(reader: asyncio.StreamReader) -> tuple[str, str, bytes]:
    """Read one request and return ``(method, target, body)``."""
    request_line = await reader.readline()
    parts = request_line.decode("latin-1").rstrip("\r\n").split(" ")
    if len(parts) != 3:
        raise ValueError(f"Malformed request line: {request_line!r}")
    method, target, _version = parts

    headers: dict[str, str] = {}
    while True:
        line = await reader.readline()
        if line in (b"\r\n", b"\n", b""):
            break
        name, _, value = line.decode("latin-1").partition(":")
        headers[name.strip().lower()] = value.strip()

    length = int(headers.get("content-length") or 0)
    if length < 0 or length > MAX_BODY_SIZE:
        raise ValueError(f"Unacceptable Content-Length: {length}")
    body = await reader.readexactly(length) if length else b""
    return method.upper(), target, body


async def _write_response(
    writer: asyncio.StreamWriter,
    status: HTTPStatus,
    content_type: str,
    payload: str,
) -> None:
    data = payload.encode("utf-8")
    head = (
        f"HTTP/1.1 {status.value} {status.phrase}\r\n"
        f"Content-Type: {content_type}; charset=utf-8\r\n"
        f"Content-Length: {len(data)}\r\n"
        "Cache-Control: no-store\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    writer.write(head.encode("latin-1") + data)
    await writer.drain()


class CallbackSession:
    """One bound listener waiting for one callback.

    Created by :meth:`AuthCallbackManager.start`; do not construct directly.

    Attributes:
        port: The bound port (resolved from the socket when 0 was requested).
        path: The callback path.
        redirect_uri: ``http://127.0.0.1:{port}{path}``.
    """

    def __init__(
        self,
        manager: AuthCallbackManager,
        host: str,
        path: str,
        timeout: float,
        shutdown_delay: float,
    ) -> None:
        self._manager = manager
        self._host = host
        self.path = path
        self.port = 0
        self._timeout = timeout
        self._shutdown_delay = shutdown_delay
        self._server: Optional[asyncio.Server] = None
        self._waiter: Optional[asyncio.Future[str]] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._shutdown_handle: Optional[asyncio.TimerHandle] = None
        self._callback_url: Optional[str] = None
        self._stopped = False

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._host}:{self.port}{self.path}"

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def is_serving(self) -> bool:
        return not self._stopped and self._server is not None and self._server.is_serving()

    def _attach(self, server: asyncio.Server, port: int) -> None:
        self._server = server
        self.port = port

    # ------------------------------------------------------------------ #
    # Waiting
    # ------------------------------------------------------------------ #

    async def wait_for_callback(self) -> str:
        """Return the callback URL once the browser delivers it.

        A URL that arrived before this call is returned as long as the
        listener is still in its shutdown grace period.

        Raises:
            CallbackServerError: If the session is (or gets) stopped first,
                including the automatic stop after a delivered callback.
            TimeoutError_: If nothing arrives within the session timeout;
                the listener is stopped as well.
        """
        if self._stopped:
            raise CallbackServerError("Callback server already stopped")
        if self._callback_url is not None:
            return self._callback_url

        loop = asyncio.get_running_loop()
        if self._waiter is None or self._waiter.done():
            self._waiter = loop.create_future()
        if self._timeout_handle is None:
            self._timeout_handle = loop.call_later(self._timeout, self._on_timeout)
        return await self._waiter

    def _on_timeout(self) -> None:
        self._timeout_handle = None
        logger.info("No authorization callback within %.0fs", self._timeout)
        self._reject(TimeoutError_("Authorization timed out"))
        self.stop()

    def _resolve(self, url: str) -> None:
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(url)

    def _reject(self, exc: Exception) -> None:
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def stop(self) -> None:
        """Close the listener and fail any pending wait. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        self._manager._forget(self)

        for handle in (self._timeout_handle, self._shutdown_handle):
            if handle is not None:
                handle.cancel()
        self._timeout_handle = None
        self._shutdown_handle = None

        if self._server is not None:
            self._server.close()
        self._reject(CallbackServerError("Callback server stopped"))
        logger.debug("Callback server on port %s stopped", self.port)

    async def wait_closed(self) -> None:
        if self._server is not None:
            await self._server.wait_closed()

    # ------------------------------------------------------------------ #
    # HTTP handling
    # ------------------------------------------------------------------ #

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            try:
                method, target, body = await asyncio.wait_for(
                    _read_request(reader), REQUEST_READ_TIMEOUT
                )
            except (asyncio.TimeoutError, asyncio.IncompleteReadError, ValueError) as exc:
                logger.debug("Dropping malformed callback request: %s", exc)
                return
            status, content_type, payload = self._route(method, target, body)
            await _write_response(writer, status, content_type, payload)
        except ConnectionError as exc:
            logger.debug("Callback connection closed early: %s", exc)
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    def _matches_path(self, target: str) -> bool:
        request_path = urlsplit(target).path
        return request_path in (self.path, f"{self.path}/")

    def _route(self, method: str, target: str, body: bytes) -> tuple[HTTPStatus, str, str]:
        if not self._matches_path(target):
            return HTTPStatus.NOT_FOUND, "text/plain", "Not Found"
        if method == "GET":
            return HTTPStatus.OK, "text/html", FORWARDING_PAGE
        if method == "POST":
            return self._accept_post(body)
        return HTTPStatus.NOT_FOUND, "text/plain", "Not Found"

    def _accept_post(self, body: bytes) -> tuple[HTTPStatus, str, str]:
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return HTTPStatus.BAD_REQUEST, "text/plain", "Invalid JSON"
        url = data.get("url") if isinstance(data, dict) else None
        if not isinstance(url, str) or not url:
            return HTTPStatus.BAD_REQUEST, "text/plain", "Missing url in request body"

        if self._callback_url is None and not self._stopped:
            logger.info("Received authorization callback on port %s", self.port)
            self._callback_url = url
            if self._timeout_handle is not None:
                self._timeout_handle.cancel()
                self._timeout_handle = None
            self._resolve(url)
            loop = asyncio.get_running_loop()
            self._shutdown_handle = loop.call_later(self._shutdown_delay, self.stop)
        return HTTPStatus.OK, "text/plain", "OK"


def _bound_port(server: asyncio.Server) -> Optional[int]:
    for sock in server.sockets or ():
        address = sock.getsockname()
        if isinstance(address, tuple) and len(address) >= 2 and isinstance(address[1], int):
            return address[1]
    return None


class AuthCallbackManager:
    """Owns the single active :class:`CallbackSession`.

    One manager is shared by every grant in a process (see
    :func:`~authflow.auth.manager.create_default_manager`), so two flows can
    never listen at the same time.

    Args:
        host: Interface to bind. Redirect URIs use the same host.
        timeout: Default seconds to wait for a callback.
        shutdown_delay: Seconds between accepting a callback and closing the
            listener.

    Example::

        callbacks = AuthCallbackManager()
        async with callbacks.acquire_session(port=0) as session:
            open_browser(auth_url_with(session.redirect_uri))
            url = await session.wait_for_callback()
    """

    def __init__(
        self,
        host: str = DEFAULT_CALLBACK_HOST,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        shutdown_delay: float = SHUTDOWN_DELAY,
    ) -> None:
        self._host = host
        self._timeout = timeout
        self._shutdown_delay = shutdown_delay
        self._active: Optional[CallbackSession] = None

    @property
    def active_session(self) -> Optional[CallbackSession]:
        return self._active

    def _forget(self, session: CallbackSession) -> None:
        if self._active is session:
            self._active = None

    async def start(
        self,
        port: int = 0,
        path: str = DEFAULT_CALLBACK_PATH,
        timeout: Optional[float] = None,
    ) -> CallbackSession:
        """Stop any active session, then bind a new listener.

        Args:
            port: Port to bind, or 0 for an OS-assigned port.
            path: Callback path to serve.
            timeout: Seconds :meth:`CallbackSession.wait_for_callback` waits.

        Raises:
            CallbackServerError: If the port cannot be bound or resolved.
        """
        if self._active is not None:
            logger.info("Stopping previous callback server before starting a new one")
            self._active.stop()
            self._active = None

        session = CallbackSession(
            self,
            host=self._host,
            path=path,
            timeout=self._timeout if timeout is None else timeout,
            shutdown_delay=self._shutdown_delay,
        )
        self._active = session
        try:
            server = await asyncio.start_server(session._handle_connection, self._host, port)
        except OSError as exc:
            self._forget(session)
            raise CallbackServerError(
                f"Failed to start callback server on {self._host}:{port}: {exc}"
            ) from exc

        if session.stopped:
            server.close()
            raise CallbackServerError("Callback server stopped")

        actual_port = _bound_port(server)
        if actual_port is None:
            server.close()
            self._forget(session)
            raise CallbackServerError("Failed to get server address")

        session._attach(server, actual_port)
        logger.info("Callback server listening on %s", session.redirect_uri)
        return session

    def release(self, session: CallbackSession) -> None:
        """Stop *session*. Equivalent to ``session.stop()``."""
        session.stop()

    @contextlib.asynccontextmanager
    async def acquire_session(
        self,
        port: int = 0,
        path: str = DEFAULT_CALLBACK_PATH,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[CallbackSession]:
        """Start a session and stop it when the block exits, however it exits."""
        session = await self.start(port=port, path=path, timeout=timeout)
        try:
            yield session
        finally:
            self.release(session)

    def stop(self) -> None:
        """Stop the active session, if any."""
        if self._active is not None:
            self._active.stop()
