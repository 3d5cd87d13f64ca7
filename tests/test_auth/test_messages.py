"""Tests for the message bus and the loopback redirect page."""

from __future__ import annotations

import asyncio
import socket

import httpx
import pytest

from tasklink.auth.callback import CallbackServer, callback_payload, is_loopback_redirect
from tasklink.auth.messages import AUTH_CODE, AUTH_ERROR, MessageBus, MessageEvent


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ---------------------------------------------------------------------------
# MessageBus
# ---------------------------------------------------------------------------


class TestMessageBus:
    def test_delivers_to_every_listener(self) -> None:
        bus = MessageBus()
        seen: list[tuple[str, MessageEvent]] = []
        bus.add_listener(lambda e: seen.append(("a", e)))
        bus.add_listener(lambda e: seen.append(("b", e)))

        bus.post_message({"type": AUTH_CODE, "code": "c"}, "http://app")

        assert [tag for tag, _ in seen] == ["a", "b"]
        assert seen[0][1].origin == "http://app"
        assert seen[0][1].data["code"] == "c"

    def test_listener_may_remove_itself(self) -> None:
        bus = MessageBus()
        calls: list[str] = []

        def once(event: MessageEvent) -> None:
            calls.append("once")
            bus.remove_listener(once)

        bus.add_listener(once)
        bus.add_listener(lambda e: calls.append("other"))
        bus.post_message({}, "http://app")
        bus.post_message({}, "http://app")

        assert calls == ["once", "other", "other"]
        assert bus.listener_count == 1

    def test_duplicate_and_unknown_listeners(self) -> None:
        bus = MessageBus()
        listener = lambda e: None  # noqa: E731
        bus.add_listener(listener)
        bus.add_listener(listener)
        assert bus.listener_count == 1
        bus.remove_listener(listener)
        bus.remove_listener(listener)
        assert bus.listener_count == 0

    @pytest.mark.asyncio
    async def test_threadsafe_post_runs_on_loop(self) -> None:
        bus = MessageBus()
        received = asyncio.Event()
        bus.add_listener(lambda e: received.set())
        loop = asyncio.get_running_loop()

        await asyncio.to_thread(bus.post_message_threadsafe, loop, {}, "http://app")

        await asyncio.wait_for(received.wait(), 2)


# ---------------------------------------------------------------------------
# Redirect query parsing
# ---------------------------------------------------------------------------


class TestCallbackPayload:
    def test_code_with_state(self) -> None:
        assert callback_payload("code=abc&state=xyz") == {
            "type": AUTH_CODE,
            "code": "abc",
            "state": "xyz",
        }

    def test_code_without_state(self) -> None:
        assert callback_payload("code=abc") == {"type": AUTH_CODE, "code": "abc"}

    def test_error_wins_over_code(self) -> None:
        payload = callback_payload(
            "error=access_denied&error_description=User+said+no&code=abc"
        )
        assert payload == {
            "type": AUTH_ERROR,
            "error": "access_denied",
            "error_description": "User said no",
        }

    def test_nothing_useful(self) -> None:
        assert callback_payload("foo=bar") is None


class TestIsLoopbackRedirect:
    @pytest.mark.parametrize(
        "uri, expected",
        [
            ("http://127.0.0.1:8765/cb", True),
            ("http://localhost:9000/cb", True),
            ("https://127.0.0.1:8765/cb", False),
            ("https://app.example.com/cb", False),
            (None, False),
        ],
    )
    def test_detection(self, uri: str | None, expected: bool) -> None:
        assert is_loopback_redirect(uri) is expected


# ---------------------------------------------------------------------------
# CallbackServer
# ---------------------------------------------------------------------------


class TestCallbackServer:
    def test_rejects_non_loopback(self) -> None:
        with pytest.raises(ValueError):
            CallbackServer(MessageBus(), "https://app.example.com/cb")

    def test_rejects_missing_port(self) -> None:
        with pytest.raises(ValueError):
            CallbackServer(MessageBus(), "http://127.0.0.1/cb")

    @pytest.mark.asyncio
    async def test_redirect_posts_code_with_origin(self) -> None:
        port = _free_port()
        bus = MessageBus()
        events: list[MessageEvent] = []
        received = asyncio.Event()

        def listener(event: MessageEvent) -> None:
            events.append(event)
            received.set()

        bus.add_listener(listener)
        redirect_uri = f"http://127.0.0.1:{port}/auth/callback"

        with CallbackServer(bus, redirect_uri) as server:
            async with httpx.AsyncClient(trust_env=False) as client:
                response = await client.get(f"{redirect_uri}?code=abc&state=s1")
            await asyncio.wait_for(received.wait(), 2)

        assert response.status_code == 200
        assert "Authorization complete" in response.text
        assert server.origin == f"http://127.0.0.1:{port}"
        assert events[0].origin == server.origin
        assert events[0].data == {"type": AUTH_CODE, "code": "abc", "state": "s1"}

    @pytest.mark.asyncio
    async def test_error_page_is_escaped(self) -> None:
        port = _free_port()
        bus = MessageBus()
        received = asyncio.Event()
        bus.add_listener(lambda e: received.set())
        redirect_uri = f"http://127.0.0.1:{port}/cb"

        with CallbackServer(bus, redirect_uri):
            async with httpx.AsyncClient(trust_env=False) as client:
                response = await client.get(f"{redirect_uri}?error=<script>")
            await asyncio.wait_for(received.wait(), 2)

        assert "<script>" not in response.text
        assert "&lt;script&gt;" in response.text

    @pytest.mark.asyncio
    async def test_other_paths_are_not_found(self) -> None:
        port = _free_port()
        bus = MessageBus()
        events: list[MessageEvent] = []
        bus.add_listener(events.append)

        with CallbackServer(bus, f"http://127.0.0.1:{port}/cb"):
            async with httpx.AsyncClient(trust_env=False) as client:
                response = await client.get(f"http://127.0.0.1:{port}/favicon.ico?code=x")
            await asyncio.sleep(0.05)

        assert response.status_code == 404
        assert events == []

    @pytest.mark.asyncio
    async def test_stop_releases_port(self) -> None:
        port = _free_port()
        server = CallbackServer(MessageBus(), f"http://127.0.0.1:{port}/cb")
        server.start()
        server.stop()
        server.stop()

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))
