"""Loopback redirect page for the authorization flow.

When the redirect URI points at the local machine, :class:`CallbackServer`
serves it. The provider redirects the consent window to
``<redirect_uri>?code=...&state=...`` (or ``?error=...``); the server answers
with a short HTML page and posts the matching ``AUTH_CODE`` / ``AUTH_ERROR``
message to the application's :class:`~tasklink.auth.messages.MessageBus`,
using the redirect URI's origin as the sender origin.

The server runs :class:`http.server.HTTPServer` in a daemon thread and hands
every message to the event loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import html
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from tasklink.auth.messages import AUTH_CODE, AUTH_ERROR, MessageBus

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})


def is_loopback_redirect(redirect_uri: Optional[str]) -> bool:
    """Return ``True`` if *redirect_uri* is an ``http`` URL on this machine."""
    if not redirect_uri:
        return False
    parts = urlsplit(redirect_uri)
    return parts.scheme == "http" and parts.hostname in LOOPBACK_HOSTS


def callback_payload(query: str) -> Optional[dict[str, str]]:
    """Translate a redirect query string into a message payload.

    Returns ``None`` when the query carries neither ``code`` nor ``error``.
    """
    params = parse_qs(query)

    if "error" in params:
        payload = {"type": AUTH_ERROR, "error": params["error"][0]}
        if "error_description" in params:
            payload["error_description"] = params["error_description"][0]
        return payload
    if "code" in params:
        payload = {"type": AUTH_CODE, "code": params["code"][0]}
        if "state" in params:
            payload["state"] = params["state"][0]
        return payload
    return None


class CallbackServer:
    """Serve the redirect URI and relay its result to a message bus.

    Args:
        bus: The hosting application's message bus.
        redirect_uri: A loopback ``http`` URL, e.g.
            ``http://127.0.0.1:8765/auth/callback/asana``.
        loop: Event loop to deliver messages on; defaults to the running loop.

    Example::

        with CallbackServer(bus, settings.redirect_uri):
            grant = await authorizer.authorize()
    """

    def __init__(
        self,
        bus: MessageBus,
        redirect_uri: str,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        parts = urlsplit(redirect_uri)
        if not is_loopback_redirect(redirect_uri) or parts.port is None:
            raise ValueError(f"Not a loopback redirect URI with a port: {redirect_uri}")
        self._bus = bus
        self._host = parts.hostname or "127.0.0.1"
        self._port = parts.port
        self._path = parts.path or "/"
        self._origin = f"{parts.scheme}://{parts.netloc}"
        self._loop = loop
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def origin(self) -> str:
        return self._origin

    def __enter__(self) -> CallbackServer:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def start(self) -> None:
        """Bind the port and start serving in a daemon thread."""
        if self._server is not None:
            return
        loop = self._loop or asyncio.get_running_loop()
        server = HTTPServer((self._host, self._port), self._make_handler(loop))
        self._server = server
        self._thread = threading.Thread(
            target=server.serve_forever, name="tasklink-callback", daemon=True
        )
        self._thread.start()
        logger.debug("Redirect page listening on %s%s", self._origin, self._path)

    def stop(self) -> None:
        """Stop serving and release the port."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _make_handler(self, loop: asyncio.AbstractEventLoop) -> type[BaseHTTPRequestHandler]:
        bus = self._bus
        origin = self._origin
        expected_path = self._path

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                parts = urlsplit(self.path)
                if parts.path != expected_path:
                    self.send_error(404)
                    return

                payload = callback_payload(parts.query)
                if payload is None:
                    body = "No authorization code received."
                elif payload["type"] == AUTH_ERROR:
                    body = f"Authorization failed: {payload['error']}"
                else:
                    body = "Authorization complete. You can close this window."

                if payload is not None:
                    bus.post_message_threadsafe(loop, payload, origin)

                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(
                    f"<html><body><h2>{html.escape(body)}</h2></body></html>".encode("utf-8")
                )

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback: " + format, *args)

        return CallbackHandler
