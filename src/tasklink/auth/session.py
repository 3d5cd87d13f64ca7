"""The pending-authorization slot.

At most one :class:`~tasklink.models.AuthSession` is pending at a time.
Starting a new flow overwrites the previous session, which makes the old
flow's code unusable; this is logged as a warning. :meth:`SessionSlot.take`
hands the session out exactly once.

:class:`FileSessionSlot` keeps the session on disk so that a flow started
by one process (``tasklink auth login --manual``) can be completed by
another (``tasklink auth code ...``).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from tasklink.config import atomic_write, get_data_dir
from tasklink.models import AuthSession

logger = logging.getLogger(__name__)


class SessionSlot(Protocol):
    """Storage for the single pending :class:`~tasklink.models.AuthSession`."""

    def store(self, session: AuthSession) -> None: ...

    def peek(self) -> Optional[AuthSession]: ...

    def take(self) -> Optional[AuthSession]: ...

    def discard(self) -> None: ...


class MemorySessionSlot:
    """A :class:`SessionSlot` living in process memory."""

    def __init__(self) -> None:
        self._session: Optional[AuthSession] = None

    def store(self, session: AuthSession) -> None:
        if self._session is not None:
            logger.warning("Overwriting a pending authorization that was never completed")
        self._session = session

    def peek(self) -> Optional[AuthSession]:
        return self._session

    def take(self) -> Optional[AuthSession]:
        session, self._session = self._session, None
        return session

    def discard(self) -> None:
        self._session = None


class FileSessionSlot:
    """A :class:`SessionSlot` persisted to ``<data_dir>/sessions/<user_key>.json``."""

    def __init__(self, user_key: str) -> None:
        directory = get_data_dir() / "sessions"
        directory.mkdir(parents=True, exist_ok=True)
        self._path = directory / f"{user_key}.json"

    @property
    def path(self) -> Path:
        return self._path

    def store(self, session: AuthSession) -> None:
        if self._path.is_file():
            logger.warning("Overwriting a pending authorization that was never completed")
        text = json.dumps(session.model_dump(mode="json")) + "\n"
        atomic_write(self._path, text, mode=0o600)

    def peek(self) -> Optional[AuthSession]:
        if not self._path.is_file():
            return None
        try:
            return AuthSession.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as exc:
            logger.warning("Ignoring unreadable pending session %s: %s", self._path, exc)
            return None

    def take(self) -> Optional[AuthSession]:
        session = self.peek()
        self.discard()
        return session

    def discard(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
