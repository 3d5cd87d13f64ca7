"""Tests for bearer injection, refresh-and-retry and refresh coalescing."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from tasklink.auth.session import MemorySessionSlot
from tasklink.auth.token_service import TokenService
from tasklink.auth.token_store import MemoryTokenStore
from tasklink.client.pipeline import RETRIED_EXTENSION, BearerRefreshAuth, RefreshCoordinator
from tasklink.exceptions import ProviderAuthError, TokenRevokedError
from tasklink.models import ProviderSettings, TokenPair

API = "https://provider.test/api/1.0"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTokenEndpoint:
    """Async token endpoint: hands out A2/R2, A3/R3, ... or a fixed error."""

    def __init__(self, error: Optional[dict[str, Any]] = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.refresh_tokens: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.refresh_tokens.append(form["refresh_token"])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            return httpx.Response(400, json=self.error)
        n = len(self.refresh_tokens) + 1
        return httpx.Response(
            200, json={"access_token": f"A{n}", "refresh_token": f"R{n}", "expires_in": 3600}
        )


class FakeApi:
    """Protected resource accepting only the tokens in ``valid``."""

    def __init__(self, valid: set[str]) -> None:
        self.valid = valid
        self.seen: list[Optional[str]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        header = request.headers.get("Authorization")
        token = header.split(" ", 1)[1] if header else None
        self.seen.append(token)
        if token in self.valid:
            return httpx.Response(200, json={"data": {"ok": True}})
        return httpx.Response(401, json={"errors": [{"message": "Not Authorized"}]})


def _build(
    settings: ProviderSettings,
    endpoint: FakeTokenEndpoint,
    api: FakeApi,
    pair: Optional[TokenPair],
    fallback: Optional[str] = None,
    on_revoked: Any = None,
) -> tuple[httpx.AsyncClient, MemoryTokenStore, RefreshCoordinator]:
    store = MemoryTokenStore(pair)
    token_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    service = TokenService(settings, MemorySessionSlot(), store, token_client)
    coordinator = RefreshCoordinator(service)
    auth = BearerRefreshAuth(
        store, coordinator, fallback_token=fallback, on_revoked=on_revoked
    )
    client = httpx.AsyncClient(
        base_url=API, auth=auth, transport=httpx.MockTransport(api)
    )
    return client, store, coordinator


# ---------------------------------------------------------------------------
# Bearer injection
# ---------------------------------------------------------------------------


class TestInjection:
    @pytest.mark.asyncio
    async def test_stored_token_is_sent(self, settings: ProviderSettings) -> None:
        api = FakeApi({"A1"})
        client, _, _ = _build(
            settings, FakeTokenEndpoint(), api, TokenPair(access_token="A1", refresh_token="R1")
        )
        async with client:
            response = await client.get("/users/me")
        assert response.status_code == 200
        assert api.seen == ["A1"]

    @pytest.mark.asyncio
    async def test_fallback_token_when_nothing_stored(self, settings: ProviderSettings) -> None:
        api = FakeApi({"DEPLOY"})
        client, _, _ = _build(settings, FakeTokenEndpoint(), api, None, fallback="DEPLOY")
        async with client:
            response = await client.get("/users/me")
        assert response.status_code == 200
        assert api.seen == ["DEPLOY"]

    @pytest.mark.asyncio
    async def test_no_token_at_all(self, settings: ProviderSettings) -> None:
        endpoint = FakeTokenEndpoint()
        api = FakeApi(set())
        client, _, _ = _build(settings, endpoint, api, None)
        async with client:
            response = await client.get("/users/me")
        assert response.status_code == 401
        assert api.seen == [None]
        assert endpoint.refresh_tokens == []

    def test_sync_client_is_rejected(self, settings: ProviderSettings) -> None:
        auth = BearerRefreshAuth(MemoryTokenStore(), MagicMock())
        transport = httpx.MockTransport(lambda r: httpx.Response(200))
        with httpx.Client(auth=auth, transport=transport) as client:
            with pytest.raises(RuntimeError, match="AsyncClient"):
                client.get("https://provider.test/")


# ---------------------------------------------------------------------------
# Refresh and retry
# ---------------------------------------------------------------------------


class TestRefreshAndRetry:
    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_once_and_retried(
        self, settings: ProviderSettings
    ) -> None:
        endpoint = FakeTokenEndpoint()
        api = FakeApi({"A2"})
        client, store, _ = _build(
            settings, endpoint, api, TokenPair(access_token="A1", refresh_token="R1")
        )

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 200
        assert endpoint.refresh_tokens == ["R1"]
        assert api.seen == ["A1", "A2"]
        assert store.get().access_token == "A2"
        assert store.get().refresh_token == "R2"

    @pytest.mark.asyncio
    async def test_second_401_is_returned_without_another_refresh(
        self, settings: ProviderSettings
    ) -> None:
        endpoint = FakeTokenEndpoint()
        api = FakeApi(set())
        client, _, _ = _build(
            settings, endpoint, api, TokenPair(access_token="A1", refresh_token="R1")
        )

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 401
        assert endpoint.refresh_tokens == ["R1"]
        assert api.seen == ["A1", "A2"]
        assert response.request.extensions[RETRIED_EXTENSION] is True

    @pytest.mark.asyncio
    async def test_without_refresh_token_401_passes_through(
        self, settings: ProviderSettings
    ) -> None:
        endpoint = FakeTokenEndpoint()
        api = FakeApi(set())
        client, store, _ = _build(settings, endpoint, api, TokenPair(access_token="PAT"))

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 401
        assert endpoint.refresh_tokens == []
        assert store.get().access_token == "PAT"

    @pytest.mark.asyncio
    async def test_post_body_is_resent(self, settings: ProviderSettings) -> None:
        bodies: list[bytes] = []

        async def api(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            if request.headers["Authorization"] == "Bearer A2":
                return httpx.Response(201)
            return httpx.Response(401)

        client, _, _ = _build(
            settings, FakeTokenEndpoint(), api, TokenPair(access_token="A1", refresh_token="R1")
        )
        async with client:
            response = await client.post("/tasks", json={"name": "x"})

        assert response.status_code == 201
        assert bodies[0] == bodies[1]
        assert json.loads(bodies[1]) == {"name": "x"}

    @pytest.mark.asyncio
    async def test_revoked_refresh_token(self, settings: ProviderSettings) -> None:
        endpoint = FakeTokenEndpoint(error={"error": "invalid_grant"})
        revoked = MagicMock()
        client, store, _ = _build(
            settings,
            endpoint,
            FakeApi(set()),
            TokenPair(access_token="A1", refresh_token="R1"),
            on_revoked=revoked,
        )

        async with client:
            with pytest.raises(TokenRevokedError):
                await client.get("/users/me")

        revoked.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_other_refresh_failure_does_not_disconnect(
        self, settings: ProviderSettings
    ) -> None:
        endpoint = FakeTokenEndpoint(error={"error": "invalid_client"})
        revoked = MagicMock()
        client, store, _ = _build(
            settings,
            endpoint,
            FakeApi(set()),
            TokenPair(access_token="A1", refresh_token="R1"),
            on_revoked=revoked,
        )

        async with client:
            with pytest.raises(ProviderAuthError):
                await client.get("/users/me")

        revoked.assert_not_called()
        assert store.get() is not None

    @pytest.mark.asyncio
    async def test_token_refreshed_elsewhere_is_reused(self, settings: ProviderSettings) -> None:
        endpoint = FakeTokenEndpoint()
        store_ref: dict[str, MemoryTokenStore] = {}

        async def api(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer A1":
                # another request rotated the pair while this one was in flight
                store_ref["store"].set(TokenPair(access_token="B1", refresh_token="RB"))
                return httpx.Response(401)
            return httpx.Response(200)

        client, store, _ = _build(
            settings, endpoint, api, TokenPair(access_token="A1", refresh_token="R1")
        )
        store_ref["store"] = store

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 200
        assert endpoint.refresh_tokens == []


# ---------------------------------------------------------------------------
# Coalescing
# ---------------------------------------------------------------------------


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_401s_share_one_refresh(self, settings: ProviderSettings) -> None:
        endpoint = FakeTokenEndpoint(delay=0.05)
        api = FakeApi({"A2"})
        client, store, coordinator = _build(
            settings, endpoint, api, TokenPair(access_token="A1", refresh_token="R1")
        )

        async with client:
            responses = await asyncio.gather(*(client.get(f"/tasks/{i}") for i in range(5)))

        assert [r.status_code for r in responses] == [200] * 5
        assert endpoint.refresh_tokens == ["R1"]
        assert store.get().refresh_token == "R2"
        assert not coordinator.in_flight

    @pytest.mark.asyncio
    async def test_failed_refresh_releases_slot(self, settings: ProviderSettings) -> None:
        endpoint = FakeTokenEndpoint(error={"error": "invalid_grant"})
        token_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        service = TokenService(settings, MemorySessionSlot(), MemoryTokenStore(), token_client)
        coordinator = RefreshCoordinator(service)

        results = await asyncio.gather(
            coordinator.refresh("R1"), coordinator.refresh("R1"), return_exceptions=True
        )

        assert all(isinstance(r, TokenRevokedError) for r in results)
        assert endpoint.refresh_tokens == ["R1"]
        assert not coordinator.in_flight

        with pytest.raises(TokenRevokedError):
            await coordinator.refresh("R1")
        assert endpoint.refresh_tokens == ["R1", "R1"]


# ---------------------------------------------------------------------------
# Proactive refresh
# ---------------------------------------------------------------------------


class TestProactiveRefresh:
    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_before_sending(
        self, settings: ProviderSettings
    ) -> None:
        endpoint = FakeTokenEndpoint()
        api = FakeApi({"A2"})
        soon = datetime.now(timezone.utc) + timedelta(seconds=5)
        client, _, _ = _build(
            settings,
            endpoint,
            api,
            TokenPair(access_token="A1", refresh_token="R1", expires_at=soon),
        )

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 200
        assert api.seen == ["A2"]
        assert endpoint.refresh_tokens == ["R1"]

    @pytest.mark.asyncio
    async def test_fresh_token_is_not_refreshed(self, settings: ProviderSettings) -> None:
        endpoint = FakeTokenEndpoint()
        api = FakeApi({"A1"})
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        client, _, _ = _build(
            settings,
            endpoint,
            api,
            TokenPair(access_token="A1", refresh_token="R1", expires_at=later),
        )

        async with client:
            await client.get("/users/me")

        assert endpoint.refresh_tokens == []

    @pytest.mark.asyncio
    async def test_transient_failure_falls_back_to_old_token(
        self, settings: ProviderSettings
    ) -> None:
        async def broken_endpoint(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        api = FakeApi({"A1"})
        soon = datetime.now(timezone.utc) + timedelta(seconds=5)
        client, store, _ = _build(
            settings,
            broken_endpoint,  # type: ignore[arg-type]
            api,
            TokenPair(access_token="A1", refresh_token="R1", expires_at=soon),
        )

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 200
        assert api.seen == ["A1"]
        assert store.get().access_token == "A1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, body",
        [
            (429, {"error": "rate_limited", "error_description": "slow down"}),
            (400, {"error": "invalid_client"}),
            (200, {"token_type": "bearer"}),
        ],
    )
    async def test_other_refresh_failures_still_send_current_token(
        self, settings: ProviderSettings, status_code: int, body: dict[str, Any]
    ) -> None:
        async def failing_endpoint(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=body)

        api = FakeApi({"A1"})
        soon = datetime.now(timezone.utc) + timedelta(seconds=5)
        client, store, _ = _build(
            settings,
            failing_endpoint,  # type: ignore[arg-type]
            api,
            TokenPair(access_token="A1", refresh_token="R1", expires_at=soon),
        )

        async with client:
            response = await client.get("/users/me")

        assert response.status_code == 200
        assert api.seen == ["A1"]
        assert store.get() is not None
        assert store.get().refresh_token == "R1"
