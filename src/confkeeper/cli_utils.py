"""Shared helpers for confkeeper CLI commands.

Console output helpers, logging setup, exit codes and settings loading used by
every command module.
"""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from confkeeper.core.exceptions import ConfkeeperError
from confkeeper.core.settings import Settings, load_settings

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1

# Rich console for formatted output
console = Console(soft_wrap=True)

# Log records go to stderr so command output stays clean
err_console = Console(stderr=True)


def _error(message: str) -> None:
    """Print error message in red."""
    console.print(f"[red]Error:[/red] {escape(message)}")


def _success(message: str) -> None:
    """Print success message in green."""
    console.print(f"[green]✓[/green] {escape(message)}")


def _warning(message: str) -> None:
    """Print warning message in yellow."""
    console.print(f"[yellow]Warning:[/yellow] {escape(message)}")


def _info(message: str) -> None:
    """Print informational message in dim style."""
    console.print(f"[dim]{escape(message)}[/dim]")


def _setup_logging(verbose: bool, quiet: bool = False) -> None:
    """Configure root logging with a Rich handler.

    Args:
        verbose: Enable DEBUG output (takes precedence over quiet).
        quiet: Only show warnings and errors.

    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
        force=True,
    )


def _load_settings_or_exit(root: str, settings_file: str | None) -> Settings:
    """Resolve settings for a command, exiting with EXIT_ERROR on failure.

    Args:
        root: Root directory holding the live document and backups.
        settings_file: Explicit settings file, or None to use the default.

    Returns:
        Loaded settings.

    Raises:
        typer.Exit: If the root is not a directory or settings are invalid.

    """
    root_path = Path(root).expanduser().resolve()
    if not root_path.is_dir():
        _error(f"Root directory does not exist: {root_path}")
        raise typer.Exit(code=EXIT_ERROR)

    try:
        return load_settings(root_path, Path(settings_file) if settings_file else None)
    except ConfkeeperError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_ERROR) from None


def _fail(error: ConfkeeperError) -> typer.Exit:
    """Report a typed failure and build the matching exit.

    Usage:
        except ConfkeeperError as e:
            raise _fail(e) from None

    """
    _error(str(error))
    return typer.Exit(code=EXIT_ERROR)
