"""Reading, parsing and serializing the configuration document."""

import json
import logging
from pathlib import Path
from typing import Any

from confkeeper.core.exceptions import ConfigIOError, ConfigParseError
from confkeeper.core.io import read_bytes

logger = logging.getLogger(__name__)

# Protection against absurdly large documents
MAX_DOCUMENT_SIZE: int = 1_048_576


def parse_document(content: bytes | str, source: Path | None = None) -> Any:
    """Parse raw document content as JSON.

    Args:
        content: Raw bytes or text.
        source: Where the content came from, for error messages.

    Returns:
        Parsed JSON value (normally a dict, but any shape is returned).

    Raises:
        ConfigParseError: If the content is not valid UTF-8 JSON or is too large.

    """
    if len(content) > MAX_DOCUMENT_SIZE:
        raise ConfigParseError("Document exceeds 1MB limit", path=source)
    try:
        text = content.decode("utf-8") if isinstance(content, bytes) else content
        return json.loads(text)
    except UnicodeDecodeError as e:
        raise ConfigParseError(f"Document is not valid UTF-8: {e}", path=source) from e
    except json.JSONDecodeError as e:
        raise ConfigParseError(f"Invalid JSON: {e.msg}", path=source, line=e.lineno) from e


def dump_document(doc: Any) -> str:
    """Serialize a document the way it is stored on disk (2-space indent, final newline)."""
    return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


def read_document_bytes(path: Path, attempts: int = 3, delay: float = 0.05) -> bytes:
    """Read a document file's raw bytes.

    Raises:
        ConfigIOError: If the file cannot be read.

    """
    try:
        return read_bytes(path, attempts, delay)
    except FileNotFoundError as e:
        raise ConfigIOError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigIOError(f"Cannot read configuration file {path}: {e}") from e


def load_document(path: Path, attempts: int = 3, delay: float = 0.05) -> Any:
    """Read and parse a document file.

    Raises:
        ConfigIOError: If the file cannot be read.
        ConfigParseError: If the content is not valid JSON.

    """
    return parse_document(read_document_bytes(path, attempts, delay), source=path)
