"""Legacy KEY=VALUE configuration sources.

Sources are parsed with python-dotenv's parser, so quoting, escapes, ``export``
prefixes and comments behave exactly as they do for the service that used to
read them. Unlike ``dotenv_values``, a line that is not an assignment is an
error here rather than something silently skipped.
"""

import io
import logging
import sys
from pathlib import Path

from dotenv.parser import parse_stream

from confkeeper.core.exceptions import ConfigIOError, ConfigParseError
from confkeeper.core.io import read_bytes

logger = logging.getLogger(__name__)

__all__ = ["merge_legacy_sources", "parse_legacy_text", "read_legacy_source"]


def parse_legacy_text(text: str, source: Path | None = None) -> dict[str, str]:
    """Parse KEY=VALUE text into an ordered mapping.

    Blank lines and ``#`` comments are ignored. A key repeated within one
    source keeps its last value.

    Args:
        text: Source content.
        source: Originating file, for error messages.

    Returns:
        Mapping of key to unquoted value, in first-seen order.

    Raises:
        ConfigParseError: If a line is not a KEY=VALUE assignment.

    """
    entries: dict[str, str] = {}
    for binding in parse_stream(io.StringIO(text)):
        line = binding.original.line
        if binding.error:
            raise ConfigParseError(
                f"Malformed line: {binding.original.string.strip()!r}",
                path=source,
                line=line,
            )
        if binding.key is None:
            # Blank line or comment
            continue
        if binding.value is None:
            raise ConfigParseError(
                f"Expected KEY=VALUE, got {binding.key!r}",
                path=source,
                line=line,
            )
        entries[binding.key] = binding.value
    return entries


def _check_source_permissions(path: Path) -> None:
    """Warn if a legacy source holding credentials is readable by others."""
    if sys.platform == "win32":
        return

    try:
        mode = path.stat().st_mode & 0o777
    except OSError:
        return
    if mode & 0o077:
        logger.warning(
            "Legacy source %s has insecure permissions %03o, expected 600 or 400. "
            "Run: chmod 600 %s",
            path,
            mode,
            path,
        )


def read_legacy_source(path: Path, attempts: int = 3, delay: float = 0.05) -> dict[str, str]:
    """Read and parse a legacy source file.

    Returns:
        Parsed entries; empty if the file does not exist.

    Raises:
        ConfigIOError: If the file exists but cannot be read.
        ConfigParseError: If the file is not UTF-8 or contains a malformed line.

    """
    try:
        raw = read_bytes(path, attempts, delay)
    except FileNotFoundError:
        logger.debug("Legacy source %s not found, treating as empty", path)
        return {}
    except OSError as e:
        raise ConfigIOError(f"Cannot read legacy source {path}: {e}") from e

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigParseError(f"Not valid UTF-8: {e}", path=path) from e

    _check_source_permissions(path)
    entries = parse_legacy_text(text, source=path)
    logger.debug("Read %d legacy key(s) from %s", len(entries), path)
    return entries


def merge_legacy_sources(*sources: dict[str, str]) -> dict[str, str]:
    """Merge sources in order of increasing specificity; later sources win."""
    merged: dict[str, str] = {}
    for source in sources:
        for key, value in source.items():
            if key in merged and merged[key] != value:
                logger.debug("Legacy key %s overridden by more specific source", key)
            merged[key] = value
    return merged
