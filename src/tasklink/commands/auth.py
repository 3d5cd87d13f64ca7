"""Auth commands -- connect to and disconnect from the provider.

Provides the ``tasklink auth`` sub-command group and the top-level ``me``
command.

Typical workflow::

    tasklink auth login            # consent in the browser
    tasklink auth login --manual   # print the URL instead
    tasklink auth code 1/12345...  # ... and paste the code back
    tasklink auth status
    tasklink auth logout
"""

from __future__ import annotations

from typing import Any, Optional

import typer

from tasklink.commands import fail, run_connection
from tasklink.output import get_output, info, success, suggest


auth_app = typer.Typer(no_args_is_help=True)


def _announce_window(url: str) -> Any:
    """Consent window opener that also shows the URL."""
    from tasklink.auth.popup import open_browser_window

    info("Opening the provider's consent page in your browser.")
    info(f"If nothing opens, visit: {url}")
    return open_browser_window(url)


def _identity_record(identity: Any) -> dict[str, Any]:
    return {
        "gid": identity.gid,
        "name": identity.name,
        "email": identity.email,
        "workspaces": len(identity.workspaces),
    }


@auth_app.command("login")
def auth_login(
    manual: bool = typer.Option(
        False, "--manual", "-m", help="Print the authorization URL instead of opening a browser."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for consent (default: auth_timeout setting)."
    ),
) -> None:
    """Connect through the provider's consent page.

    Opens the authorization URL in a browser window and waits for the
    redirect to come back to the local callback server. With ``--manual``
    the URL is printed on stdout and the flow is completed later with
    ``tasklink auth code``.

    Example::

        tasklink auth login
        tasklink auth login --manual
    """
    if manual:

        async def _begin(conn: Any) -> Any:
            return conn.begin_manual()

        request = run_connection(_begin)
        get_output().print_data(request.url)
        info("Open the URL above, approve access, then paste the code:")
        suggest("tasklink auth code <CODE>")
        return

    async def _connect(conn: Any) -> Any:
        await conn.connect(timeout)
        return await conn.cache.get_me()

    identity = run_connection(_connect, opener=_announce_window)
    success(f"Connected as {identity.name or identity.gid}.")
    suggest("Pick a workspace: tasklink workspace list")


@auth_app.command("code")
def auth_code(
    code: str = typer.Argument(help="Authorization code shown after consent."),
) -> None:
    """Complete a ``--manual`` login with the pasted authorization code.

    Example::

        tasklink auth code 1/1200000000000:abcdef
    """

    async def _exchange(conn: Any) -> Any:
        await conn.connect_with_code(code)
        return await conn.cache.get_me()

    identity = run_connection(_exchange)
    success(f"Connected as {identity.name or identity.gid}.")


@auth_app.command("token")
def auth_token(
    token: Optional[str] = typer.Argument(
        None, help="Personal access token (prompted for when omitted)."
    ),
) -> None:
    """Connect with a personal access token instead of OAuth2.

    The token is verified against the provider before it is kept.
    """
    if not token:
        token = typer.prompt("Personal access token", hide_input=True)

    async def _store(conn: Any) -> Any:
        return await conn.connect_with_token(token)

    identity = run_connection(_store)
    success(f"Connected as {identity.name or identity.gid}.")


@auth_app.command("status")
def auth_status() -> None:
    """Show the stored connection without contacting the provider."""
    from tasklink.auth.token_store import FileTokenStore
    from tasklink.config import load_settings
    from tasklink.exceptions import TasklinkError
    from tasklink.workspace import WorkspacePreferences

    try:
        settings = load_settings()
    except TasklinkError as exc:
        fail(exc)

    pair = FileTokenStore(settings.user_key).get()
    record: dict[str, Any] = {
        "user_key": settings.user_key,
        "state": "connected" if pair is not None else "disconnected",
        "client_id": settings.client_id,
        "confidential": settings.is_confidential,
        "workspace": WorkspacePreferences().get(settings.user_key),
    }
    if pair is not None:
        record["token_type"] = pair.token_type
        record["refreshable"] = pair.refresh_token is not None
        record["expires_at"] = pair.expires_at.isoformat() if pair.expires_at else None
    elif settings.fallback_access_token:
        record["state"] = "fallback"

    get_output().print_record(record, title="Connection")
    if pair is None and not settings.fallback_access_token:
        suggest("Connect: tasklink auth login")


@auth_app.command("logout")
def auth_logout() -> None:
    """Forget stored tokens, the pending login and the workspace choice."""

    async def _disconnect(conn: Any) -> None:
        conn.disconnect()

    run_connection(_disconnect)
    success("Disconnected.")


def me_command() -> None:
    """Show the connected user.

    Example::

        tasklink me
        tasklink --json me
    """

    async def _me(conn: Any) -> Any:
        return await conn.cache.get_me()

    identity = run_connection(_me)
    get_output().print_record(_identity_record(identity), title="Current user")
