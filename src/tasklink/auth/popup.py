"""Popup-based authorization: consent window, rendezvous, and code exchange.

:class:`PopupAuthorizer` drives the interactive half of the OAuth2
Authorization Code grant with PKCE (:rfc:`7636`) for a public client:

1. :meth:`~PopupAuthorizer.initiate_auth` generates a verifier/challenge
   pair, stores the pending :class:`~tasklink.models.AuthSession`, builds the
   authorization URL and opens it in a new browser window.
2. :class:`AuthRendezvous` listens on the application's
   :class:`~tasklink.auth.messages.MessageBus` for the first same-origin
   ``AUTH_CODE`` or ``AUTH_ERROR`` message and resolves exactly once.
3. The code is handed to
   :meth:`~tasklink.auth.token_service.TokenService.exchange_code`, which
   stores the token pair.

The wait is bounded by a timeout and by polling the opened window's
``closed`` flag. The listener is removed and the pending session discarded
on every path that does not reach the exchange.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from dataclasses import dataclass
from typing import Callable, Optional, Protocol
from urllib.parse import urlencode

from tasklink.auth.messages import AUTH_CODE, AUTH_ERROR, MessageBus, MessageEvent
from tasklink.auth.pkce import CHALLENGE_METHOD, generate_pkce_pair, generate_state
from tasklink.auth.session import SessionSlot
from tasklink.auth.token_service import TokenService
from tasklink.config import require_client
from tasklink.exceptions import (
    AuthorizationAbandonedError,
    ConfigurationError,
    ProviderAuthError,
)
from tasklink.models import AuthSession, ProviderSettings, TokenGrant

logger = logging.getLogger(__name__)


class PopupWindow(Protocol):
    """Handle on an opened consent window."""

    @property
    def closed(self) -> bool: ...


class BrowserWindow:
    """Window handle for :mod:`webbrowser`, which cannot observe closing.

    Only the timeout bounds the wait for such a window.
    """

    closed = False


WindowOpener = Callable[[str], Optional[PopupWindow]]


def open_browser_window(url: str) -> PopupWindow:
    """Open *url* in a new browser window."""
    if not webbrowser.open_new(url):
        logger.warning("Could not open a browser window; visit this URL to continue: %s", url)
    return BrowserWindow()


@dataclass(frozen=True)
class AuthorizationRequest:
    """A started authorization attempt.

    Attributes:
        url: The authorization URL the user has to visit.
        state: The ``state`` sent with it.
        window: The opened consent window, if one was opened.
    """

    url: str
    state: str
    window: Optional[PopupWindow] = None


@dataclass(frozen=True)
class AuthorizationResult:
    code: str
    state: Optional[str] = None


class AuthRendezvous:
    """Single-resolution channel between the consent window and the opener.

    Used as a context manager: entering registers the listener, leaving
    removes it and cancels the pending wait. Messages from any origin other
    than *origin* are ignored, as are messages arriving after resolution.

    Args:
        bus: The hosting application's message bus.
        origin: The application's own origin.
    """

    def __init__(self, bus: MessageBus, origin: str) -> None:
        self._bus = bus
        self._origin = origin
        self._future: asyncio.Future[AuthorizationResult] = (
            asyncio.get_running_loop().create_future()
        )

    def __enter__(self) -> AuthRendezvous:
        self._bus.add_listener(self._on_message)
        return self

    def __exit__(self, *args: object) -> None:
        self._bus.remove_listener(self._on_message)
        if not self._future.done():
            self._future.cancel()
        elif not self._future.cancelled():
            self._future.exception()  # mark retrieved

    @property
    def done(self) -> bool:
        return self._future.done()

    def _settle(self) -> None:
        self._bus.remove_listener(self._on_message)

    def _on_message(self, event: MessageEvent) -> None:
        if event.origin != self._origin:
            logger.debug("Ignoring message from foreign origin %s", event.origin)
            return
        if self._future.done() or not isinstance(event.data, dict):
            return

        kind = event.data.get("type")
        if kind == AUTH_CODE and event.data.get("code"):
            self._settle()
            self._future.set_result(
                AuthorizationResult(code=event.data["code"], state=event.data.get("state"))
            )
        elif kind == AUTH_ERROR:
            error = str(event.data.get("error") or "unknown_error")
            description = event.data.get("error_description")
            message = f"Authorization failed: {error}"
            if description:
                message += f" - {description}"
            self._settle()
            self._future.set_exception(ProviderAuthError(message, error=error))

    async def wait(
        self,
        timeout: Optional[float],
        window: Optional[PopupWindow] = None,
        poll_interval: float = 0.5,
    ) -> AuthorizationResult:
        """Wait for the first valid message.

        Raises:
            ProviderAuthError: If the window reported an error.
            AuthorizationAbandonedError: On timeout or when *window* closes
                without a result.
        """
        watcher = None
        if window is not None:
            watcher = asyncio.ensure_future(self._watch_window(window, poll_interval))
        try:
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            raise AuthorizationAbandonedError(
                f"No authorization received within {timeout:g} seconds",
                error="timeout",
            ) from None
        finally:
            if watcher is not None:
                watcher.cancel()

    async def _watch_window(self, window: PopupWindow, poll_interval: float) -> None:
        while not self._future.done():
            if window.closed:
                # one more interval for a message posted right before closing
                await asyncio.sleep(poll_interval)
                if not self._future.done():
                    self._settle()
                    self._future.set_exception(
                        AuthorizationAbandonedError(
                            "The authorization window was closed before completing",
                            error="window_closed",
                        )
                    )
                return
            await asyncio.sleep(poll_interval)


class PopupAuthorizer:
    """Run the consent step in a popup window and exchange its code.

    Args:
        settings: Provider settings (client id, redirect URI, endpoints,
            scope, timeouts).
        token_service: Exchanges the code and stores the token pair.
        session_slot: Holds the pending session between initiation and
            exchange.
        bus: The hosting application's message bus.
        opener: Opens the consent window; defaults to
            :func:`open_browser_window`.

    Example::

        authorizer = PopupAuthorizer(settings, service, slot, bus)
        grant = await authorizer.authorize()
    """

    def __init__(
        self,
        settings: ProviderSettings,
        token_service: TokenService,
        session_slot: SessionSlot,
        bus: MessageBus,
        opener: Optional[WindowOpener] = None,
    ) -> None:
        self._settings = settings
        self._token_service = token_service
        self._session_slot = session_slot
        self._bus = bus
        self._opener = opener or open_browser_window

    def build_authorization_url(self, challenge: str, state: str) -> str:
        """Return the authorization endpoint URL for one attempt."""
        client_id, redirect_uri = require_client(self._settings)
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": CHALLENGE_METHOD,
            "scope": self._settings.scope,
        }
        return f"{self._settings.authorization_url}?{urlencode(params)}"

    def initiate_auth(self, open_window: bool = True) -> AuthorizationRequest:
        """Start an authorization attempt.

        Any previously pending session is overwritten.

        Args:
            open_window: Open the URL in a browser window. Pass ``False``
                to only obtain the URL (manual code entry).

        Raises:
            ConfigurationError: If client id or redirect URI is missing.
        """
        require_client(self._settings)
        verifier, challenge = generate_pkce_pair()
        state = self._settings.static_state or generate_state()
        url = self.build_authorization_url(challenge, state)

        self._session_slot.store(AuthSession(verifier=verifier, state=state))
        window = self._opener(url) if open_window else None
        logger.info("Authorization started")
        return AuthorizationRequest(url=url, state=state, window=window)

    async def authorize(self, timeout: Optional[float] = None) -> TokenGrant:
        """Run the whole popup flow and return the exchanged grant.

        Args:
            timeout: Seconds to wait for the consent window; defaults to
                ``settings.auth_timeout``.

        Raises:
            ConfigurationError: If client id or redirect URI is missing.
            ProviderAuthError: If consent is denied, the state does not
                match, or the token endpoint rejects the code.
            AuthorizationAbandonedError: If the window closes or the wait
                times out.
            NetworkError: On transport failure during the exchange.
        """
        require_client(self._settings)
        origin = self._settings.app_origin
        if origin is None:
            raise ConfigurationError(
                f"Cannot derive an origin from redirect URI {self._settings.redirect_uri!r}"
            )
        if timeout is None:
            timeout = self._settings.auth_timeout

        with AuthRendezvous(self._bus, origin) as rendezvous:
            try:
                request = self.initiate_auth()
                result = await rendezvous.wait(
                    timeout, window=request.window, poll_interval=self._settings.poll_interval
                )
            except BaseException:
                self._session_slot.discard()
                raise

        if result.state is not None and result.state != request.state:
            self._session_slot.discard()
            raise ProviderAuthError(
                "Authorization state mismatch; the response belongs to another attempt",
                error="state_mismatch",
            )
        return await self._token_service.exchange_code(result.code)
