"""HTTP client layer for tasklink.

Classes:
    :class:`ProviderClient` -- base-URL-scoped async client for the provider API.
    :class:`BearerRefreshAuth` -- :class:`httpx.Auth` flow injecting bearer
    tokens and retrying once after a refresh on 401.
    :class:`RefreshCoordinator` -- shares one in-flight refresh between
    concurrent callers.

Example::

    from tasklink.client import BearerRefreshAuth, ProviderClient, RefreshCoordinator

    auth = BearerRefreshAuth(store, RefreshCoordinator(token_service))
    async with ProviderClient(settings, auth=auth) as client:
        me = await client.get_me()
"""

from tasklink.client.api_client import ProviderClient
from tasklink.client.pipeline import BearerRefreshAuth, RefreshCoordinator

__all__ = ["BearerRefreshAuth", "ProviderClient", "RefreshCoordinator"]
