"""Token exchange and refresh against the provider's token endpoint.

:class:`TokenService` implements the two grants this client uses:

1. ``authorization_code`` -- trades the code from the consent step, plus
   the PKCE verifier of the pending session, for a token pair.
2. ``refresh_token`` -- trades the stored refresh token for a new access
   token (and possibly a rotated refresh token).

Both grants write the resulting :class:`~tasklink.models.TokenPair` to the
injected :class:`~tasklink.auth.token_store.TokenStore`.

Failures are mapped so that callers can choose a recovery path:

=====================================  ==============================
Condition                              Exception
=====================================  ==============================
transport failure, timeout             :class:`NetworkError`
``invalid_grant`` on refresh           :class:`TokenRevokedError`
other 4xx, missing ``access_token``    :class:`ProviderAuthError`
5xx, 408, 429                          :class:`ServerError`
=====================================  ==============================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from tasklink.auth.session import SessionSlot
from tasklink.auth.token_store import TokenStore
from tasklink.config import require_client
from tasklink.exceptions import (
    NetworkError,
    NoPendingFlowError,
    ProviderAuthError,
    ServerError,
    TokenRevokedError,
)
from tasklink.models import ProviderSettings, TokenGrant

logger = logging.getLogger(__name__)

INVALID_GRANT = "invalid_grant"
RETRY_LATER_STATUSES = frozenset({408, 429})


class TokenService:
    """Exchange authorization codes and refresh tokens for token pairs.

    Args:
        settings: Provider settings (client id, redirect URI, token URL,
            optional client secret).
        session_slot: Where :meth:`~tasklink.auth.popup.PopupAuthorizer.initiate_auth`
            left the pending session.
        store: Credential store written after every successful grant.
        http_client: Client used for the token endpoint. It must not carry
            the bearer-refresh auth of the API client, or a failing refresh
            would recurse.

    Example::

        service = TokenService(settings, MemorySessionSlot(), MemoryTokenStore(), client)
        grant = await service.exchange_code(code)
    """

    def __init__(
        self,
        settings: ProviderSettings,
        session_slot: SessionSlot,
        store: TokenStore,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._session_slot = session_slot
        self._store = store
        self._http = http_client

    @property
    def store(self) -> TokenStore:
        return self._store

    async def exchange_code(self, code: str) -> TokenGrant:
        """Trade an authorization *code* for a token pair.

        The pending session is consumed before the request is sent, so it is
        discarded whether the exchange succeeds or fails.

        Returns:
            The parsed grant, including any identity data the provider
            embedded in the response.

        Raises:
            NoPendingFlowError: If no authorization is pending.
            ConfigurationError: If client id or redirect URI is missing.
            ProviderAuthError: If the provider rejects the code.
            NetworkError: On transport failure.
        """
        session = self._session_slot.take()
        if session is None:
            raise NoPendingFlowError(
                "No pending authorization to complete; start a new login"
            )
        client_id, redirect_uri = require_client(self._settings)

        form = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "code": code,
            "code_verifier": session.verifier,
        }
        grant, issued_at = await self._request_grant(form, refreshing=False)
        self._store.set(grant.to_token_pair(issued_at))
        logger.info("Authorization code exchanged for a token pair")
        return grant

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Trade *refresh_token* for a new access token.

        If the provider does not rotate the refresh token, the grant (and
        the stored pair) keep *refresh_token*.

        Raises:
            TokenRevokedError: If the refresh token expired or was revoked.
            ProviderAuthError: On any other provider rejection.
            NetworkError: On transport failure.
        """
        client_id, redirect_uri = require_client(self._settings)

        form = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "refresh_token": refresh_token,
        }
        grant, issued_at = await self._request_grant(form, refreshing=True)
        if not grant.refresh_token:
            grant.refresh_token = refresh_token
        self._store.set(grant.to_token_pair(issued_at))
        logger.info("Access token refreshed")
        return grant

    async def _request_grant(
        self, form: dict[str, str], refreshing: bool
    ) -> tuple[TokenGrant, datetime]:
        """POST *form* and return the grant with the time the request went out."""
        if self._settings.client_secret:
            form["client_secret"] = self._settings.client_secret

        grant_type = form["grant_type"]
        logger.debug("POST %s (grant_type=%s)", self._settings.token_url, grant_type)
        issued_at = datetime.now(timezone.utc)
        try:
            response = await self._http.post(
                self._settings.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Token request failed: {exc}") from exc

        if response.status_code >= 400:
            self._raise_for_error(response, refreshing)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderAuthError("Token endpoint returned a non-JSON response") from exc
        if not isinstance(payload, dict) or "access_token" not in payload:
            raise ProviderAuthError("Token response missing 'access_token' field")

        try:
            grant = TokenGrant.model_validate(payload)
        except ValidationError as exc:
            raise ProviderAuthError(f"Malformed token response: {exc}") from exc

        return grant, issued_at

    def _raise_for_error(self, response: httpx.Response, refreshing: bool) -> None:
        status = response.status_code
        error, description = _parse_error(response)
        detail = f"{error}: {description}" if description else error

        if status >= 500 or status in RETRY_LATER_STATUSES:
            raise ServerError(f"Token endpoint returned HTTP {status}: {detail}")
        if refreshing and error == INVALID_GRANT:
            raise TokenRevokedError(f"Refresh token rejected: {detail}")
        raise ProviderAuthError(
            f"Token request failed with HTTP {status}: {detail}", error=error
        )


def _parse_error(response: httpx.Response) -> tuple[str, Optional[str]]:
    """Extract ``(error, error_description)`` from an OAuth2 error body."""
    try:
        body: Any = response.json()
    except ValueError:
        return (response.text[:200] or f"HTTP {response.status_code}"), None
    if isinstance(body, dict):
        error = body.get("error")
        description = body.get("error_description")
        if isinstance(error, str):
            return error, description if isinstance(description, str) else None
        # Asana wraps API errors as {"errors": [{"message": ...}]}
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", "unknown_error")), None
    return f"HTTP {response.status_code}", None
