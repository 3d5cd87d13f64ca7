"""Connection facade tying the auth core, API client and cache together.

:class:`ProviderConnection` is what callers (the CLI, or an application
embedding tasklink) hold on to. It builds the collaborators from one set of
:class:`~tasklink.models.ProviderSettings` and offers the connection
lifecycle:

- :meth:`~ProviderConnection.connect` -- popup authorization.
- :meth:`~ProviderConnection.begin_manual` /
  :meth:`~ProviderConnection.connect_with_code` -- paste-the-code fallback.
- :meth:`~ProviderConnection.connect_with_token` -- personal access token.
- :meth:`~ProviderConnection.disconnect` -- forget everything.

A refresh token rejected by the provider moves the connection to
:attr:`ConnectionState.DISCONNECTED` immediately; the
:class:`~tasklink.exceptions.TokenRevokedError` still reaches the caller.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

import httpx

from tasklink.auth.callback import CallbackServer, is_loopback_redirect
from tasklink.auth.messages import MessageBus
from tasklink.auth.popup import AuthorizationRequest, PopupAuthorizer, WindowOpener
from tasklink.auth.session import FileSessionSlot, MemorySessionSlot, SessionSlot
from tasklink.auth.token_service import TokenService
from tasklink.auth.token_store import FileTokenStore, MemoryTokenStore, TokenStore
from tasklink.client.api_client import ProviderClient
from tasklink.client.pipeline import BearerRefreshAuth, RefreshCoordinator
from tasklink.config import require_client
from tasklink.exceptions import ConfigurationError, TasklinkError
from tasklink.models import Identity, ProviderSettings, TokenGrant, TokenPair
from tasklink.workspace import SessionCache, WorkspacePreferences

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ProviderConnection:
    """One user's connection to the provider.

    Use as an async context manager; leaving it closes both HTTP clients.
    The defaults keep everything in memory; :meth:`from_settings` builds a
    connection backed by the files under the data directory.

    Args:
        settings: Provider settings.
        store: Credential store; in-memory when omitted.
        session_slot: Pending-session slot; in-memory when omitted.
        bus: Message bus the redirect page posts to.
        opener: Opens the consent window.
        preferences: Durable workspace choice; in-memory when omitted.
        api_transport: Transport override for the API client.
        token_transport: Transport override for the token endpoint client.

    Example::

        async with ProviderConnection.from_settings(load_settings()) as conn:
            await conn.connect()
            workspace = await conn.cache.get_workspace_id()
    """

    def __init__(
        self,
        settings: ProviderSettings,
        store: Optional[TokenStore] = None,
        session_slot: Optional[SessionSlot] = None,
        bus: Optional[MessageBus] = None,
        opener: Optional[WindowOpener] = None,
        preferences: Optional[WorkspacePreferences] = None,
        api_transport: Optional[httpx.AsyncBaseTransport] = None,
        token_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else MemoryTokenStore()
        self.session_slot = session_slot if session_slot is not None else MemorySessionSlot()
        self.bus = bus if bus is not None else MessageBus()

        self._token_http = httpx.AsyncClient(
            timeout=settings.request_timeout,
            verify=settings.verify_ssl,
            transport=token_transport,
        )
        self.token_service = TokenService(
            settings, self.session_slot, self.store, self._token_http
        )
        self.authorizer = PopupAuthorizer(
            settings, self.token_service, self.session_slot, self.bus, opener=opener
        )
        self.auth = BearerRefreshAuth(
            self.store,
            RefreshCoordinator(self.token_service),
            fallback_token=settings.fallback_access_token,
            on_revoked=self._handle_revoked,
            refresh_skew=settings.refresh_skew,
        )
        self.client = ProviderClient(settings, auth=self.auth, transport=api_transport)
        self.cache = SessionCache(self.client.get_me, settings.user_key, preferences)

    @classmethod
    def from_settings(
        cls, settings: ProviderSettings, opener: Optional[WindowOpener] = None
    ) -> ProviderConnection:
        """Build a connection persisted under the data directory."""
        return cls(
            settings,
            store=FileTokenStore(settings.user_key),
            session_slot=FileSessionSlot(settings.user_key),
            opener=opener,
            preferences=WorkspacePreferences(),
        )

    async def __aenter__(self) -> ProviderConnection:
        await self.client.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.client.aclose()
        await self._token_http.aclose()

    @property
    def state(self) -> ConnectionState:
        if self.store.get() is not None:
            return ConnectionState.CONNECTED
        return ConnectionState.DISCONNECTED

    async def connect(self, timeout: Optional[float] = None) -> TokenGrant:
        """Authorize through the consent window.

        For a loopback redirect URI the redirect page is served locally for
        the duration of the flow; otherwise the embedding application is
        expected to post the redirect result to :attr:`bus`.
        """
        _, redirect_uri = require_client(self.settings)
        if is_loopback_redirect(redirect_uri):
            try:
                server = CallbackServer(self.bus, redirect_uri)
                server.start()
            except (ValueError, OSError) as exc:
                raise ConfigurationError(
                    f"Cannot serve redirect URI {redirect_uri}: {exc}"
                ) from exc
            try:
                grant = await self.authorizer.authorize(timeout)
            finally:
                server.stop()
        else:
            grant = await self.authorizer.authorize(timeout)
        logger.info("Connected")
        return grant

    def begin_manual(self) -> AuthorizationRequest:
        """Start a flow without opening a window and return its URL."""
        return self.authorizer.initiate_auth(open_window=False)

    async def connect_with_code(self, code: str) -> TokenGrant:
        """Complete a flow started with :meth:`begin_manual`."""
        grant = await self.token_service.exchange_code(code.strip())
        logger.info("Connected")
        return grant

    async def connect_with_token(self, token: str) -> Identity:
        """Store a personal access token and verify it.

        The token is removed again if the provider does not accept it.
        """
        self.store.set(TokenPair(access_token=token.strip()))
        self.cache.forget_identity()
        try:
            identity = await self.cache.get_me()
        except TasklinkError:
            self.store.clear()
            raise
        logger.info("Connected with a personal access token")
        return identity

    def disconnect(self) -> None:
        """Forget tokens, cached identity and any pending authorization."""
        self.store.clear()
        self.cache.reset()
        self.session_slot.discard()
        logger.info("Disconnected")

    def _handle_revoked(self) -> None:
        self.store.clear()
        self.cache.reset()
