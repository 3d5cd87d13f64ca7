"""Workspace commands -- list the user's workspaces and pick the active one.

The choice is remembered per user key in ``<data_dir>/workspaces.json``.
"""

from __future__ import annotations

from typing import Any

import typer

from tasklink.commands import run_connection
from tasklink.output import get_output, info, success


workspace_app = typer.Typer(no_args_is_help=True)


@workspace_app.command("list")
def workspace_list() -> None:
    """List the workspaces the connected user belongs to.

    The active workspace is marked with ``*``.

    Example::

        tasklink workspace list
        tasklink --plain workspace list | cut -f1
    """

    async def _list(conn: Any) -> Any:
        workspaces = await conn.cache.list_workspaces()
        return workspaces, conn.cache.cached_workspace_id

    workspaces, active = run_connection(_list)
    if not workspaces:
        info("No workspaces.")
        return

    rows = [[ws.gid, ws.name, "*" if ws.gid == active else ""] for ws in workspaces]
    get_output().print_table(["gid", "name", "active"], rows, title="Workspaces")


@workspace_app.command("show")
def workspace_show() -> None:
    """Show the active workspace, choosing the first one if none is set."""

    async def _show(conn: Any) -> Any:
        workspace_id = await conn.cache.get_workspace_id()
        identity = await conn.cache.get_me()
        return workspace_id, identity

    workspace_id, identity = run_connection(_show)
    name = next((ws.name for ws in identity.workspaces if ws.gid == workspace_id), "")
    get_output().print_record({"gid": workspace_id, "name": name}, title="Active workspace")


@workspace_app.command("use")
def workspace_use(
    workspace_id: str = typer.Argument(help="Workspace gid (see `tasklink workspace list`)."),
) -> None:
    """Switch the active workspace.

    Example::

        tasklink workspace use 1200000000000000
    """
    from tasklink.exceptions import NotFoundError

    async def _use(conn: Any) -> Any:
        workspaces = await conn.cache.list_workspaces()
        match = next((ws for ws in workspaces if ws.gid == workspace_id), None)
        if match is None:
            raise NotFoundError(f"Workspace '{workspace_id}' is not one of yours")
        conn.cache.set_workspace_id(match.gid)
        return match

    workspace = run_connection(_use)
    success(f"Active workspace: {workspace.name or workspace.gid}")
