"""Credential stores holding the current user's :class:`~tasklink.models.TokenPair`.

The auth core never reads tokens from ambient state. Instead a
:class:`TokenStore` is injected into the token service and the request
pipeline. Two implementations are provided:

- :class:`MemoryTokenStore` -- process-local, used by tests and embedders
  that keep tokens elsewhere.
- :class:`FileTokenStore` -- one JSON file per user key under
  ``<data_dir>/credentials/``, written atomically with ``0o600``
  permissions.

Reads and writes are not transactional: the most recent successful
:meth:`~TokenStore.set` wins.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from tasklink.config import atomic_write, get_data_dir
from tasklink.models import TokenPair

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenStore(Protocol):
    """Durable holder of the current user's token pair."""

    def get(self) -> Optional[TokenPair]:
        """Return the stored pair, or ``None`` when disconnected."""
        ...

    def set(self, pair: TokenPair) -> None:
        """Replace the stored pair."""
        ...

    def clear(self) -> None:
        """Forget the stored pair."""
        ...


class MemoryTokenStore:
    """A :class:`TokenStore` that keeps the pair in memory.

    Example::

        store = MemoryTokenStore(TokenPair(access_token="A1", refresh_token="R1"))
        assert store.get().refresh_token == "R1"
    """

    def __init__(self, pair: Optional[TokenPair] = None) -> None:
        self._pair = pair

    def get(self) -> Optional[TokenPair]:
        return self._pair

    def set(self, pair: TokenPair) -> None:
        self._pair = pair

    def clear(self) -> None:
        self._pair = None


def _credentials_dir() -> Path:
    """Return the credentials directory, creating it if needed."""
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


class FileTokenStore:
    """A :class:`TokenStore` persisted to ``<data_dir>/credentials/<user_key>.json``.

    Args:
        user_key: The local account name the tokens belong to.
    """

    def __init__(self, user_key: str) -> None:
        self._user_key = user_key
        self._path = _credentials_dir() / f"{user_key}.json"

    @property
    def path(self) -> Path:
        """The filesystem path to this user's token file."""
        return self._path

    def get(self) -> Optional[TokenPair]:
        """Load the stored pair.

        Returns ``None`` if the file does not exist or cannot be parsed;
        a damaged file reads as "disconnected".
        """
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return TokenPair.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, exc)
            return None

    def set(self, pair: TokenPair) -> None:
        """Persist *pair* atomically with ``0o600`` permissions."""
        text = json.dumps(pair.model_dump(mode="json"), indent=2) + "\n"
        atomic_write(self._path, text, mode=0o600)
        logger.debug("Stored token pair for user key '%s'", self._user_key)

    def clear(self) -> None:
        """Delete the token file; a no-op when it is already gone."""
        if self._path.is_file():
            self._path.unlink()
            logger.debug("Cleared token pair for user key '%s'", self._user_key)
