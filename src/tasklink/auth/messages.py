"""Message passing between the consent window and the hosting application.

The redirect page of the authorization flow reports its result to the
window that opened it by posting a message. :class:`MessageBus` is the
hosting context's end of that channel: producers call
:meth:`MessageBus.post_message` with a payload and the origin they speak
for, and every registered listener receives a :class:`MessageEvent`.

Listeners must check :attr:`MessageEvent.origin` themselves before trusting
the payload.

Payload contract::

    {"type": "AUTH_CODE", "code": "...", "state": "..."}       # success
    {"type": "AUTH_ERROR", "error": "access_denied", ...}       # failure
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

AUTH_CODE = "AUTH_CODE"
AUTH_ERROR = "AUTH_ERROR"


@dataclass(frozen=True)
class MessageEvent:
    """A message delivered to listeners.

    Attributes:
        data: The posted payload, usually a dict.
        origin: ``scheme://host[:port]`` of the sender.
    """

    data: Any
    origin: str


Listener = Callable[[MessageEvent], None]


class MessageBus:
    """Dispatches posted messages to registered listeners.

    Dispatch is synchronous and iterates over a snapshot of the listeners,
    so a listener may remove itself while handling a message.

    Example::

        bus = MessageBus()
        bus.add_listener(print)
        bus.post_message({"type": "AUTH_CODE", "code": "abc"}, "http://127.0.0.1:8765")
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def post_message(self, data: Any, origin: str) -> None:
        """Deliver *data* from *origin* to every current listener."""
        event = MessageEvent(data=data, origin=origin)
        listeners = list(self._listeners)
        if not listeners:
            logger.debug("Dropping message from %s: no listeners", origin)
        for listener in listeners:
            listener(event)

    def post_message_threadsafe(
        self, loop: asyncio.AbstractEventLoop, data: Any, origin: str
    ) -> None:
        """Schedule :meth:`post_message` on *loop* from another thread."""
        loop.call_soon_threadsafe(self.post_message, data, origin)
