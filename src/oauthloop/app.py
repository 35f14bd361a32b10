"""Typer application and CLI entry point for oauthloop.

This module wires together the top-level Typer application and registers the
built-in commands (``login``, ``authorize-url``, ``discover``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers, registers commands, and
invokes the Typer app. Unhandled exceptions are written to a crash log under
the data directory.

See Also:
    :mod:`oauthloop.config`: Settings and client credential resolution.
    :mod:`oauthloop.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from oauthloop import __version__
from oauthloop.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="oauthloop",
    help="Sign in to an OAuth2 provider from the terminal via a loopback redirect.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"oauthloop {__version__}")
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
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    timestamps: bool = typer.Option(
        False, "--timestamps", help="Prefix diagnostics with time, pid, and level."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~oauthloop.output.OutputManager` from
    CLI flags.

    Args:
        version: If ``True``, print the version string and exit.
        json_output: Force JSON output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output.
        timestamps: Prefix every diagnostic line with a timestamp.
    """
    from oauthloop.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
        timestamps=timestamps,
    )
    set_output(output)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from oauthloop.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return str(log_path)


def register_commands() -> None:
    """Attach the built-in commands to :data:`app`. Safe to call repeatedly."""
    from oauthloop.commands.discover import discover_command
    from oauthloop.commands.login import authorize_url_command, login_command

    registered = {info.name for info in app.registered_commands}
    if "login" not in registered:
        app.command("login")(login_command)
    if "authorize-url" not in registered:
        app.command("authorize-url")(authorize_url_command)
    if "discover" not in registered:
        app.command("discover")(discover_command)


def main() -> None:
    """CLI entry point invoked by the ``oauthloop`` console script.

    Performs the following sequence:

    1. Install signal handlers for clean Ctrl-C behaviour.
    2. Register built-in commands.
    3. Invoke the Typer application.

    Unhandled :class:`~oauthloop.exceptions.OAuthLoopError` instances
    cause a clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from oauthloop.exceptions import OAuthLoopError
        from oauthloop.output import error

        if isinstance(exc, OAuthLoopError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
