"""Validate command for confkeeper CLI."""

from pathlib import Path
from typing import Any

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
from confkeeper.lifecycle.document import load_document
from confkeeper.lifecycle.validator import format_validation_errors, validate_config


def _print_summary(doc: dict[str, Any]) -> None:
    """Print the key fields of a valid document."""
    server = doc["server"]
    mikrotik = doc["mikrotik"]
    llm = doc["llm"]
    provider = llm["provider"]

    console.print(f"  Version:     {escape(doc['version'])}")
    console.print(f"  Server:      port {server['port']} ({server['nodeEnv']})")
    console.print(f"  MikroTik:    {escape(mikrotik['host'])}:{mikrotik['port']}")
    console.print(f"  Provider:    {provider}")
    section = llm.get(provider) or {}
    if section.get("model"):
        console.print(f"  Model:       {escape(str(section['model']))}")
    if section.get("endpoint"):
        console.print(f"  Endpoint:    {escape(str(section['endpoint']))}")


def validate_config_command(
    path: str | None = typer.Argument(
        None,
        help="Configuration file to validate (default: live config.json)",
    ),
    root: str = typer.Option(
        ".",
        "--root",
        "-r",
        envvar="CONFKEEPER_ROOT",
        help="Directory holding config.json",
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
    """Validate a configuration document against the schema."""
    _setup_logging(verbose=verbose)
    settings = _load_settings_or_exit(root, settings_file)
    target = Path(path).resolve() if path else settings.config_path

    try:
        doc = load_document(target, settings.io_retries, settings.io_retry_delay)
    except ConfkeeperError as e:
        raise _fail(e) from None

    result = validate_config(doc)
    if not result.valid:
        _error(f"{target} is invalid ({len(result.errors)} error(s))")
        console.print(escape(format_validation_errors(result.errors)))
        raise typer.Exit(code=EXIT_ERROR)

    _success(f"{target} is valid")
    _print_summary(doc)
