"""Typer application and CLI entry point for tasklink.

This module wires together the top-level Typer application and registers the
built-in sub-commands (``auth``, ``workspace``, ``config`` and ``me``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs a signal handler and invokes the Typer
app. :class:`~tasklink.exceptions.TasklinkError` exits with
the error's code; anything else is written to a crash log under the data
directory.

See Also:
    :mod:`tasklink.config`: Settings resolution.
    :mod:`tasklink.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from tasklink import __version__
from tasklink.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="tasklink",
    help="Connect to a task-management provider with OAuth2 + PKCE.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

# ------------------------------------------------------------------ #
# Built-in commands
# ------------------------------------------------------------------ #

from tasklink.commands.auth import auth_app, me_command  # noqa: E402
from tasklink.commands.config import config_app  # noqa: E402
from tasklink.commands.workspace import workspace_app  # noqa: E402

app.add_typer(auth_app, name="auth", help="Connect and disconnect.")
app.add_typer(workspace_app, name="workspace", help="Workspace selection.")
app.add_typer(config_app, name="config", help="Settings management.")
app.command("me")(me_command)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"tasklink {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~tasklink.output.OutputManager` from the
    CLI flags and, with ``--verbose``, routes library logging to stderr.
    """
    from tasklink.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)

    if verbose:
        _configure_logging(output)


def _configure_logging(output: Any) -> None:
    """Attach a Rich handler at DEBUG to the ``tasklink`` logger."""
    from rich.logging import RichHandler

    logger = logging.getLogger("tasklink")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(console=output.stderr_console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from tasklink.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``tasklink`` console script.

    Unhandled :class:`~tasklink.exceptions.TasklinkError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from tasklink.exceptions import TasklinkError
        from tasklink.output import error

        if isinstance(exc, TasklinkError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
