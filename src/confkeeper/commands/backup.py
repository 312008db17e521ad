"""Backup commands for confkeeper CLI.

create-backup, list-backups, restore-config, export-backup and import-backup.
"""

from pathlib import Path

import typer
from rich.markup import escape

from confkeeper.cli_utils import (
    _error,
    _fail,
    _info,
    _load_settings_or_exit,
    _setup_logging,
    _success,
    _warning,
    console,
)
from confkeeper.core.exceptions import ConfkeeperError
from confkeeper.lifecycle.backup import BackupRecord, BackupStore


def _format_size(size: int) -> str:
    """Format a byte count for display (e.g. 1.2 KB)."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _print_record(record: BackupRecord, detailed: bool = False) -> None:
    created = record.created.strftime("%Y-%m-%d %H:%M:%S UTC")
    console.print(f"[bold]{record.id}[/bold]")
    console.print(f"  Created:     {created}")
    console.print(f"  Size:        {_format_size(record.size)}")
    console.print(f"  Version:     {escape(record.metadata.version)}")
    console.print(f"  Created by:  {record.metadata.created_by.value}")
    if record.metadata.description:
        console.print(f"  Description: {escape(record.metadata.description)}")
    if detailed:
        console.print(f"  Path:        {escape(str(record.path))}")
        console.print(f"  Checksum:    {record.checksum}")


def create_backup_command(
    description: list[str] | None = typer.Argument(
        None,
        help="Free-text description of the backup",
    ),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json and the backup store",
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
    """Create a manual backup of the live configuration.

    Examples:
        confkeeper create-backup
        confkeeper create-backup before router upgrade

    """
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)
    text = " ".join(description) if description else None

    try:
        record = BackupStore(settings).create_backup(description=text)
    except ConfkeeperError as e:
        raise _fail(e) from None

    _success("Backup created")
    console.print(f"  ID:          {record.id}")
    console.print(f"  Path:        {escape(str(record.path))}")
    console.print(f"  Size:        {_format_size(record.size)}")
    console.print(f"  Created:     {record.created.isoformat()}")
    if text:
        console.print(f"  Description: {escape(text)}")


def list_backups_command(
    detailed: bool = typer.Option(
        False,
        "--detailed",
        "-d",
        help="Also show storage path and verify each backup",
    ),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json and the backup store",
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
    """List stored backups, newest first."""
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)
    store = BackupStore(settings)

    try:
        stats = store.get_stats()
        backups = store.list_backups()
    except ConfkeeperError as e:
        raise _fail(e) from None

    console.print("[bold]Backup statistics[/bold]")
    console.print(f"  Total backups: {stats.total_backups}")
    console.print(f"  Total size:    {_format_size(stats.total_size)}")
    if stats.newest_backup and stats.oldest_backup:
        console.print(f"  Newest:        {stats.newest_backup.isoformat()}")
        console.print(f"  Oldest:        {stats.oldest_backup.isoformat()}")
    console.print()

    if not backups:
        _info("No backups found")
        return

    invalid = 0
    for record in backups:
        _print_record(record, detailed=detailed)
        if detailed:
            try:
                result = store.verify_backup(record.id)
            except ConfkeeperError as e:
                _error(str(e))
                invalid += 1
                continue
            if result.valid:
                console.print("  Status:      [green]valid[/green]")
            else:
                invalid += 1
                console.print("  Status:      [red]invalid[/red]")
                for err in result.errors:
                    console.print(f"    - {escape(err)}")
        console.print()

    if invalid:
        _warning(f"{invalid} backup(s) failed verification")


def restore_config_command(
    backup_id: str = typer.Argument(..., help="Backup ID to restore"),
    no_verify: bool = typer.Option(
        False,
        "--no-verify",
        help="Skip checksum and schema verification",
    ),
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Do not snapshot the current configuration first",
    ),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json and the backup store",
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
    """Restore the live configuration from a backup.

    By default the backup is verified first and the current configuration is
    snapshotted so the restore can be undone.
    """
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)

    if no_verify:
        _warning("Skipping verification of the backup")

    try:
        safety = BackupStore(settings).restore_backup(
            backup_id,
            verify=not no_verify,
            create_backup=not no_backup,
        )
    except ConfkeeperError as e:
        raise _fail(e) from None

    _success(f"Configuration restored from {backup_id}")
    if safety is not None:
        console.print(f"  Previous configuration saved as: {safety.id}")
    console.print(f"  Restart the service to apply: {escape(str(settings.config_path))}")


def export_backup_command(
    backup_id: str = typer.Argument(..., help="Backup ID to export"),
    destination: str = typer.Argument(..., help="Destination file"),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json and the backup store",
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
    """Copy a backup's content to a file outside the store."""
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)

    try:
        path = BackupStore(settings).export_backup(backup_id, Path(destination).resolve())
    except ConfkeeperError as e:
        raise _fail(e) from None

    _success(f"Exported {backup_id} to {path}")


def import_backup_command(
    source: str = typer.Argument(..., help="Configuration file to import"),
    description: list[str] | None = typer.Argument(
        None,
        help="Free-text description of the backup",
    ),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json and the backup store",
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
    """Validate a configuration file and store it as a new backup."""
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)
    text = " ".join(description) if description else None

    try:
        record = BackupStore(settings).import_backup(Path(source).resolve(), description=text)
    except ConfkeeperError as e:
        raise _fail(e) from None

    _success(f"Imported {source} as {record.id}")
