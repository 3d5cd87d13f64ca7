"""Authorization core for tasklink.

This package implements the OAuth2 Authorization Code grant with PKCE for a
public client and the token lifecycle that follows it:

- :mod:`tasklink.auth.pkce` -- verifier, challenge and state generation.
- :class:`TokenService` -- code exchange and refresh against the token endpoint.
- :class:`PopupAuthorizer` -- consent window and message rendezvous.
- :class:`MessageBus` / :class:`CallbackServer` -- the channel the redirect
  page uses to report back.
- :class:`TokenStore` implementations and the pending :class:`SessionSlot`.

Typical usage::

    from tasklink.auth import PopupAuthorizer, TokenService

    service = TokenService(settings, slot, store, http_client)
    authorizer = PopupAuthorizer(settings, service, slot, bus)
    grant = await authorizer.authorize()
"""

from tasklink.auth.callback import CallbackServer, is_loopback_redirect
from tasklink.auth.messages import AUTH_CODE, AUTH_ERROR, MessageBus, MessageEvent
from tasklink.auth.pkce import derive_challenge, generate_state, generate_verifier
from tasklink.auth.popup import (
    AuthorizationRequest,
    AuthRendezvous,
    PopupAuthorizer,
    PopupWindow,
)
from tasklink.auth.session import FileSessionSlot, MemorySessionSlot, SessionSlot
from tasklink.auth.token_service import TokenService
from tasklink.auth.token_store import FileTokenStore, MemoryTokenStore, TokenStore

__all__ = [
    "AUTH_CODE",
    "AUTH_ERROR",
    "AuthRendezvous",
    "AuthorizationRequest",
    "CallbackServer",
    "FileSessionSlot",
    "FileTokenStore",
    "MemorySessionSlot",
    "MemoryTokenStore",
    "MessageBus",
    "MessageEvent",
    "PopupAuthorizer",
    "PopupWindow",
    "SessionSlot",
    "TokenService",
    "TokenStore",
    "derive_challenge",
    "generate_state",
    "generate_verifier",
    "is_loopback_redirect",
]
