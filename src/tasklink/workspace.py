"""Identity and workspace cache.

:class:`SessionCache` memoizes the current identity for the lifetime of the
process and resolves the active workspace from it. The cache only grows:
nothing invalidates it except :meth:`SessionCache.reset`, which the
connection calls on disconnect.

The chosen workspace is also written to :class:`WorkspacePreferences`
(``<data_dir>/workspaces.json``), keyed by user key, so that it survives a
restart.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from tasklink.config import atomic_write, get_data_dir
from tasklink.exceptions import NoWorkspaceError
from tasklink.models import Identity, Workspace

logger = logging.getLogger(__name__)

IdentityFetcher = Callable[[], Awaitable[Identity]]


class WorkspacePreferences:
    """Remembered workspace per user key.

    Args:
        path: JSON file to use; defaults to ``<data_dir>/workspaces.json``.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path or get_data_dir() / "workspaces.json"

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable workspace preferences %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, user_key: str) -> Optional[str]:
        return self._read().get(user_key)

    def set(self, user_key: str, workspace_id: str) -> None:
        data = self._read()
        data[user_key] = workspace_id
        atomic_write(self._path, json.dumps(data, indent=2) + "\n")

    def remove(self, user_key: str) -> None:
        data = self._read()
        if data.pop(user_key, None) is not None:
            atomic_write(self._path, json.dumps(data, indent=2) + "\n")


class SessionCache:
    """Process-lifetime cache of the current identity and workspace.

    Args:
        fetch_identity: Coroutine function returning the current identity,
            e.g. :meth:`~tasklink.client.api_client.ProviderClient.get_me`.
        user_key: Key under which the workspace choice is persisted.
        preferences: Durable workspace store; ``None`` keeps the choice in
            memory only.

    Example::

        cache = SessionCache(client.get_me, "default", WorkspacePreferences())
        workspace = await cache.get_workspace_id()
    """

    def __init__(
        self,
        fetch_identity: IdentityFetcher,
        user_key: str = "default",
        preferences: Optional[WorkspacePreferences] = None,
    ) -> None:
        self._fetch_identity = fetch_identity
        self._user_key = user_key
        self._preferences = preferences
        self._identity: Optional[Identity] = None
        self._identity_task: Optional[asyncio.Future[Identity]] = None
        self._workspace_id: Optional[str] = (
            preferences.get(user_key) if preferences is not None else None
        )

    @property
    def cached_identity(self) -> Optional[Identity]:
        """The memoized identity, without fetching."""
        return self._identity

    @property
    def cached_workspace_id(self) -> Optional[str]:
        """The current workspace id, without fetching."""
        return self._workspace_id

    async def get_me(self) -> Identity:
        """Return the current identity, fetching it at most once.

        Concurrent first callers share one fetch. A failed fetch leaves the
        cache empty so that a later call can try again.
        """
        if self._identity is not None:
            return self._identity

        task = self._identity_task
        if task is None:
            task = asyncio.ensure_future(self._fetch_identity())
            self._identity_task = task
        try:
            identity = await asyncio.shield(task)
        finally:
            if self._identity_task is task and task.done():
                self._identity_task = None

        if self._identity is None:
            self._identity = identity
            logger.debug("Cached identity %s", identity.gid)
            if self._workspace_id is None and identity.workspaces:
                self._workspace_id = identity.workspaces[0].gid
        return self._identity

    async def get_workspace_id(self) -> str:
        """Return the active workspace id.

        Uses the cached or persisted choice when there is one; otherwise
        picks the identity's first workspace and persists it.

        Raises:
            NoWorkspaceError: If the identity has no workspaces.
        """
        if self._workspace_id is None:
            identity = await self.get_me()
            if self._workspace_id is None:
                if not identity.workspaces:
                    raise NoWorkspaceError(
                        f"User '{identity.name or identity.gid}' does not belong to any workspace"
                    )
                self._workspace_id = identity.workspaces[0].gid

        self._persist(self._workspace_id)
        return self._workspace_id

    def set_workspace_id(self, workspace_id: str) -> None:
        """Switch the active workspace and persist the choice."""
        self._workspace_id = workspace_id
        self._persist(workspace_id)

    async def list_workspaces(self) -> list[Workspace]:
        """Return the workspaces of the current identity."""
        identity = await self.get_me()
        return list(identity.workspaces)

    def forget_identity(self) -> None:
        """Drop the memoized identity; the workspace choice is kept."""
        self._identity = None
        self._identity_task = None

    def reset(self) -> None:
        """Forget identity and workspace, including the persisted choice."""
        self._identity = None
        self._identity_task = None
        self._workspace_id = None
        if self._preferences is not None:
            self._preferences.remove(self._user_key)

    def _persist(self, workspace_id: str) -> None:
        if self._preferences is not None and self._preferences.get(self._user_key) != workspace_id:
            self._preferences.set(self._user_key, workspace_id)
