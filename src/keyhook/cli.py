"""CLI entry point for keyhook."""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version

import typer

from keyhook.config import KeyhookConfig, parse_keymap
from keyhook.errors import (
    ConfigurationError,
    KeyhookError,
    TerminalRestoreError,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="keyhook",
    help="A CLI wrapper that intercepts and remaps keyboard input.",
    no_args_is_help=True,
    add_completion=False,
)

EXIT_CONFIG_ERROR = 2
EXIT_RESOURCE_ERROR = 1


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    # The child owns the screen, so only warnings reach stderr by default.
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=log_file,
        force=True,
    )


def _package_version() -> str:
    try:
        return version("keyhook")
    except PackageNotFoundError:
        return "0.0.0"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"keyhook {_package_version()}")
        raise typer.Exit()


# Everything after COMMAND belongs to the child, including its options.
@app.command(
    context_settings={
        "allow_interspersed_args": False,
        "ignore_unknown_options": True,
    }
)
def run(
    command: str = typer.Argument(help="Command to execute."),
    args: list[str] | None = typer.Argument(
        None, help="Arguments for the command."
    ),
    keymaps: list[str] | None = typer.Option(
        None,
        "--keymap",
        "-k",
        metavar="INPUT:OUTPUT",
        help="Map input bytes to output bytes (hex format, e.g. 1b5b41:1b4f41). Repeatable.",
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
    log_file: str | None = typer.Option(
        None, "--log-file", help="Write log records to this file."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Run COMMAND on a pseudo-terminal, rewriting keystrokes on the way in."""
    from keyhook.pty import run_session

    try:
        config = KeyhookConfig.load(config_file)
        if verbose:
            config.verbose = True
        if log_file:
            config.log_file = log_file
        cli_rules = [parse_keymap(spec) for spec in keymaps or []]
        keymap = config.build_keymap(cli_rules)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR)

    setup_logging(config.verbose, config.log_file)
    logger.debug("Key map: %r", keymap)

    try:
        code = run_session(command, args or [], keymap, config)
    except TerminalRestoreError as e:
        if e.pending is not None:
            typer.echo(f"Error: {e.pending}", err=True)
        typer.echo(f"Error: {e}", err=True)
        typer.echo("Run `reset` or `stty sane` to recover the terminal.", err=True)
        raise typer.Exit(EXIT_RESOURCE_ERROR)
    except KeyhookError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_RESOURCE_ERROR)

    raise typer.Exit(code)
