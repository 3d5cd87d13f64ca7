"""Built-in CLI sub-commands for tasklink.

* :mod:`~tasklink.commands.auth` -- connect, disconnect, inspect the
  connection, and the top-level ``me`` command.
* :mod:`~tasklink.commands.workspace` -- list and switch workspaces.
* :mod:`~tasklink.commands.config` -- view and modify settings.

Commands drive the async :class:`~tasklink.connection.ProviderConnection`
through :func:`run_connection`, which turns a
:class:`~tasklink.exceptions.TasklinkError` into an error message, a hint,
and the error's exit code.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import typer

from tasklink.exceptions import TasklinkError
from tasklink.output import error, suggest

T = TypeVar("T")


def fail(exc: TasklinkError) -> NoReturn:
    """Report *exc* on stderr and exit with its code."""
    error(str(exc))
    if exc.reauthenticate:
        suggest("Reconnect: tasklink auth login")
    elif exc.transient:
        suggest("This may be temporary; try again shortly.")
    raise typer.Exit(code=exc.exit_code)


def run_connection(
    action: Callable[..., Awaitable[T]],
    opener: Optional[Callable[[str], object]] = None,
) -> T:
    """Run *action* against a file-backed connection built from the settings.

    Args:
        action: Coroutine function receiving the open
            :class:`~tasklink.connection.ProviderConnection`.
        opener: Consent window opener, for ``auth login``.
    """
    from tasklink.config import load_settings
    from tasklink.connection import ProviderConnection

    async def _main() -> T:
        settings = load_settings()
        async with ProviderConnection.from_settings(settings, opener=opener) as conn:
            return await action(conn)

    try:
        return asyncio.run(_main())
    except TasklinkError as exc:
        fail(exc)
