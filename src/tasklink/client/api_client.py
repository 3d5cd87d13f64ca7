"""Asynchronous client for the provider's REST API.

:class:`ProviderClient` is the base-URL-scoped HTTP client the request
pipeline wraps. It owns an :class:`httpx.AsyncClient` configured with the
provider's base URL, timeout and TLS settings, installs the
:class:`~tasklink.client.pipeline.BearerRefreshAuth` flow, unwraps the
provider's ``{"data": ...}`` envelope and maps failures onto the
:mod:`tasklink.exceptions` hierarchy.

Only the identity call the workspace cache needs is wrapped here; domain
objects (tasks, projects, sections) are reached through :meth:`request` and
:meth:`get_data`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from tasklink.exceptions import (
    NetworkError,
    NotFoundError,
    ProviderRequestError,
    ServerError,
    UnauthorizedError,
)
from tasklink.models import Identity, ProviderSettings

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = "name,email,workspaces.name"


class ProviderClient:
    """Asynchronous client for provider API calls.

    Must be used as an async context manager so that the underlying
    transport is opened and closed properly.

    Args:
        settings: Provides ``api_base_url``, ``request_timeout`` and
            ``verify_ssl``.
        auth: The auth flow to install, normally a
            :class:`~tasklink.client.pipeline.BearerRefreshAuth`.
        transport: Optional transport override (tests use
            :class:`httpx.MockTransport`).

    Example::

        async with ProviderClient(settings, auth=auth) as client:
            me = await client.get_me()
    """

    def __init__(
        self,
        settings: ProviderSettings,
        auth: Optional[httpx.Auth] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._auth = auth
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> ProviderClient:
        self._client = httpx.AsyncClient(
            base_url=self._settings.api_base_url,
            timeout=self._settings.request_timeout,
            verify=self._settings.verify_ssl,
            auth=self._auth,
            transport=self._transport,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        """Send an authenticated request and map error statuses.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            path: URL path appended to ``api_base_url``.
            params: Query parameters.
            json_body: JSON-serialisable body.

        Raises:
            UnauthorizedError: On a 401 the pipeline could not recover from.
            NotFoundError: On 404.
            ServerError: On 5xx.
            ProviderRequestError: On any other 4xx.
            NetworkError: On transport failure.
            TokenRevokedError: If the refresh token was rejected mid-request.
        """
        assert self._client is not None, "Client not initialised -- use as async context manager"

        kwargs: dict[str, Any] = {"params": params}
        if json_body is not None:
            kwargs["json"] = json_body

        logger.debug("%s %s", method, path)
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"Request to {path} failed: {exc}") from exc

        self._map_response_error(response)
        return response

    async def get_data(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET *path* and return the ``data`` member of the response body."""
        response = await self.request("GET", path, params=params)
        return _unwrap(response)

    async def get_me(self) -> Identity:
        """Fetch the current user with their workspaces."""
        response = await self.request("GET", "/users/me", params={"opt_fields": IDENTITY_FIELDS})
        data = _unwrap(response)
        try:
            return Identity.model_validate(data)
        except ValidationError as exc:
            raise ProviderRequestError(
                f"Malformed identity in HTTP {response.status_code} response: {exc}",
                status_code=response.status_code,
            ) from exc

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _map_response_error(self, response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        msg = _error_message(response)
        full_msg = f"HTTP {status}: {msg}" if msg else f"HTTP {status}"

        if status == 401:
            raise UnauthorizedError(f"{full_msg} (reconnect with `tasklink auth login`)")
        if status == 404:
            raise NotFoundError(full_msg)
        if status >= 500:
            raise ServerError(full_msg)
        raise ProviderRequestError(full_msg, status_code=status)


def _unwrap(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderRequestError(
            f"HTTP {response.status_code} response is not JSON: {response.text[:200]}",
            status_code=response.status_code,
        ) from exc
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        detail = response.json()
    except ValueError:
        return response.text[:200] if response.text else ""
    if isinstance(detail, dict):
        errors = detail.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", ""))
        return str(detail.get("message") or detail.get("error") or "")
    return str(detail)
