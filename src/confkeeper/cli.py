"""Typer CLI entry point for confkeeper.

This module only wires commands together; argument handling lives in
commands/ and all behavior in lifecycle/.
"""

import typer

from confkeeper import __version__
from confkeeper.cli_utils import console

app = typer.Typer(
    name="confkeeper",
    help="Backup, restore, validate and migrate a service's config.json",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"confkeeper {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Backup, restore, validate and migrate a service's config.json."""
    if ctx.invoked_subcommand is None:
        # Show help when no subcommand is provided
        raise typer.Exit()


# ============================================================================
# Register commands from commands/ modules
# ============================================================================

from confkeeper.commands.backup import (  # noqa: E402
    create_backup_command,
    export_backup_command,
    import_backup_command,
    list_backups_command,
    restore_config_command,
)
from confkeeper.commands.migrate import migrate_config_command  # noqa: E402
from confkeeper.commands.validate import validate_config_command  # noqa: E402

app.command(name="create-backup")(create_backup_command)
app.command(name="list-backups")(list_backups_command)
app.command(name="restore-config")(restore_config_command)
app.command(name="export-backup")(export_backup_command)
app.command(name="import-backup")(import_backup_command)
app.command(name="migrate-config")(migrate_config_command)
app.command(name="validate-config")(validate_config_command)


if __name__ == "__main__":
    app()
