"""Config commands -- view and modify tasklink settings.

Settings live in ``config.json`` under the config directory; any field can
also be supplied as a ``TASKLINK_<FIELD>`` environment variable, which wins
over the file.
"""

from __future__ import annotations

from typing import Any, Optional

import typer

from tasklink.commands import fail
from tasklink.exceptions import TasklinkError
from tasklink.output import get_output, info, success

config_app = typer.Typer(no_args_is_help=True)

_SECRET_FIELDS = ("client_secret", "fallback_access_token")


def _masked(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: ("********" if key in _SECRET_FIELDS and value else value)
        for key, value in data.items()
    }


@config_app.command("show")
def config_show() -> None:
    """Show the effective settings (file, environment and defaults merged).

    Secrets are masked.

    Example::

        tasklink config show
        tasklink --json config show
    """
    from tasklink.config import load_settings, settings_path

    try:
        settings = load_settings()
    except TasklinkError as exc:
        fail(exc)

    info(f"Config file: {settings_path()}")
    get_output().print_record(_masked(settings.model_dump(mode="json")), title="Settings")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting name, e.g. 'client_id'."),
    value: Optional[str] = typer.Argument(
        None, help="New value; omit together with --unset to remove the key."
    ),
    unset: bool = typer.Option(False, "--unset", help="Remove the key from config.json."),
) -> None:
    """Set a value in ``config.json``.

    Secrets may be given as ``env:VAR`` or ``file:/path`` so that the file
    does not hold them in clear text.

    Example::

        tasklink config set client_id 1200000000000000
        tasklink config set client_secret env:ASANA_CLIENT_SECRET
        tasklink config set static_state --unset
    """
    from tasklink.config import save_setting

    if value is None and not unset:
        get_output().error("Provide a value or --unset.")
        raise typer.Exit(code=2)

    try:
        save_setting(key, None if unset else value)
    except TasklinkError as exc:
        fail(exc)

    if unset:
        success(f"Removed {key}.")
    else:
        success(f"Set {key}.")


@config_app.command("path")
def config_path() -> None:
    """Print the path of ``config.json``."""
    from tasklink.config import settings_path

    get_output().print_data(str(settings_path()))
