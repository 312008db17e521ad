"""Migrate command for confkeeper CLI.

Converts the legacy .env sources into config.json.
"""

import typer
from rich.markup import escape

from confkeeper.cli_utils import (
    EXIT_ERROR,
    _error,
    _fail,
    _load_settings_or_exit,
    _setup_logging,
    _success,
    console,
)
from confkeeper.core.exceptions import ConfkeeperError
from confkeeper.lifecycle.migrator import Migrator, generate_report


def migrate_config_command(
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show the migrated configuration without writing anything",
    ),
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Do not snapshot an existing config.json first",
    ),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json and the legacy .env files",
    ),
    settings_file: str | None = typer.Option(
        None,
        "--settings",
        help="Path to confkeeper.yaml settings file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug output",
    ),
) -> None:
    """Migrate legacy .env files into config.json.

    Values from server/.env override values from the root .env.

    Examples:
        confkeeper migrate-config --dry-run
        confkeeper migrate-config --no-backup

    """
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)

    try:
        result = Migrator(settings).migrate(dry_run=dry_run, create_backup=not no_backup)
    except ConfkeeperError as e:
        raise _fail(e) from None

    console.print(escape(generate_report(result)))
    console.print()

    if not result.success:
        _error("Migration failed validation, nothing was written")
        raise typer.Exit(code=EXIT_ERROR)

    if dry_run:
        _success("Dry run complete, no files were modified")
    else:
        _success(f"Configuration written to {settings.config_path}")
