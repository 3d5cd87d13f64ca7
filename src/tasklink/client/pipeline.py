"""Authenticated request pipeline with refresh-and-retry on 401.

:class:`BearerRefreshAuth` is an :class:`httpx.Auth` flow installed on the
provider API client. For every request it:

1. Reads the current :class:`~tasklink.models.TokenPair` from the injected
   store (refreshing first if the pair is known to expire within the skew)
   and sets ``Authorization: Bearer <token>``, falling back to the
   deployment-level token when no pair is stored.
2. On a 401 for a request not yet marked as retried, marks it, obtains a
   fresh access token, rewrites the header and resends the request once.
   A 401 on the resend is returned to the caller unchanged.

:class:`RefreshCoordinator` makes concurrent refreshes share a single
in-flight call, so a burst of 401s performs one refresh-token rotation
instead of racing several.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator, Callable, Generator, Optional

import httpx

from tasklink.auth.token_service import TokenService
from tasklink.auth.token_store import TokenStore
from tasklink.exceptions import TasklinkError, TokenRevokedError
from tasklink.models import TokenGrant, TokenPair

logger = logging.getLogger(__name__)

RETRIED_EXTENSION = "tasklink.retried"


class RefreshCoordinator:
    """Coalesce concurrent refreshes into one in-flight operation.

    The first caller starts the refresh; callers arriving while it runs
    await the same result. The slot is released as soon as the refresh
    settles, successfully or not.
    """

    def __init__(self, token_service: TokenService) -> None:
        self._token_service = token_service
        self._inflight: Optional[asyncio.Future[TokenGrant]] = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    async def refresh(self, refresh_token: str) -> TokenGrant:
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._token_service.refresh_token(refresh_token))
            task.add_done_callback(self._release)
            self._inflight = task
        else:
            logger.debug("Joining in-flight token refresh")
        return await asyncio.shield(task)

    def _release(self, task: asyncio.Future[TokenGrant]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()  # mark retrieved; awaiting callers re-raise it


class BearerRefreshAuth(httpx.Auth):
    """Inject bearer tokens and self-heal on 401.

    Args:
        store: Source of the current token pair.
        coordinator: Performs (coalesced) refreshes.
        fallback_token: Deployment-level token used when no pair is stored.
        on_revoked: Called when a refresh fails with
            :class:`~tasklink.exceptions.TokenRevokedError`, before the error
            propagates.
        refresh_skew: Refresh proactively when the access token expires
            within this many seconds.
    """

    requires_request_body = True

    def __init__(
        self,
        store: TokenStore,
        coordinator: RefreshCoordinator,
        fallback_token: Optional[str] = None,
        on_revoked: Optional[Callable[[], None]] = None,
        refresh_skew: float = 30.0,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._fallback_token = fallback_token
        self._on_revoked = on_revoked
        self._refresh_skew = refresh_skew

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("BearerRefreshAuth requires httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        pair = await self._current_pair()
        token = pair.access_token if pair is not None else self._fallback_token
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

        response = yield request

        if response.status_code != 401 or request.extensions.get(RETRIED_EXTENSION):
            return
        request.extensions[RETRIED_EXTENSION] = True

        fresh = await self._recover(sent_token=token)
        if fresh is None:
            return
        logger.debug("Retrying %s %s with a refreshed token", request.method, request.url.path)
        request.headers["Authorization"] = f"Bearer {fresh}"
        yield request

    async def _current_pair(self) -> Optional[TokenPair]:
        pair = self._store.get()
        if pair is None or not pair.refresh_token:
            return pair
        if not pair.expires_within(self._refresh_skew):
            return pair

        logger.debug("Access token about to expire; refreshing before the request")
        try:
            await self._refresh(pair.refresh_token)
        except TokenRevokedError:
            raise
        except TasklinkError as exc:
            # the 401 path still covers us if the old token gets rejected
            logger.warning("Proactive token refresh failed: %s", exc)
            return pair
        return self._store.get()

    async def _recover(self, sent_token: Optional[str]) -> Optional[str]:
        """Return a token worth retrying with, or ``None`` to give up."""
        stored = self._store.get()
        if stored is None:
            return None
        if stored.access_token != sent_token:
            # refreshed by a concurrent request after ours was sent
            return stored.access_token
        if not stored.refresh_token:
            return None
        grant = await self._refresh(stored.refresh_token)
        return grant.access_token

    async def _refresh(self, refresh_token: str) -> TokenGrant:
        try:
            return await self._coordinator.refresh(refresh_token)
        except TokenRevokedError:
            logger.warning("Refresh token revoked; connection is now disconnected")
            if self._on_revoked is not None:
                self._on_revoked()
            raise
