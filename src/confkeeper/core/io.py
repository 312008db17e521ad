"""Shared I/O utilities for atomic file operations.

This module provides reusable utilities for:
- Atomic file writes (temp file + fsync + os.replace pattern)
- Bounded retry of transient filesystem contention
- SHA-256 checksums of file content
- Unified timestamp generation for filenames

Every write to the live configuration document and to the backup store goes
through atomic_write(), so readers observe either the old or the new content.
"""

import contextlib
import errno
import hashlib
import logging
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

__all__ = [
    "DEFAULT_FILE_MODE",
    "TRANSIENT_ERRNOS",
    "atomic_write",
    "compute_checksum",
    "get_timestamp",
    "is_transient_io_error",
    "read_bytes",
    "retry_transient",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Secure default for files that did not exist before
DEFAULT_FILE_MODE = 0o600

# errno values that indicate short-lived contention rather than a real failure
TRANSIENT_ERRNOS: frozenset[int] = frozenset(
    {
        errno.EAGAIN,
        errno.EBUSY,
        errno.EINTR,
        errno.ETXTBSY,
    }
)


def get_timestamp(dt: datetime | None = None) -> str:
    """Generate unified timestamp for filenames.

    Format: YYYYMMDDTHHMMSSffffffZ (e.g., 20261018T154530123456Z)
    - ISO 8601 basic format with microseconds (compact, sortable)
    - Explicitly UTC (Z suffix)
    - Filesystem-safe

    Args:
        dt: Datetime to format. If None, uses current UTC time.

    Returns:
        Timestamp string.

    Examples:
        >>> get_timestamp(datetime(2025, 1, 13, 15, 45, 30, 7, tzinfo=UTC))
        '20250113T154530000007Z'

    """
    if dt is None:
        dt = datetime.now(UTC)
    return dt.strftime("%Y%m%dT%H%M%S%fZ")


def is_transient_io_error(error: OSError) -> bool:
    """Check if an OSError is transient contention worth retrying."""
    return error.errno in TRANSIENT_ERRNOS


def retry_transient(
    operation: Callable[[], T],
    attempts: int = 3,
    delay: float = 0.05,
    description: str = "I/O operation",
) -> T:
    """Run operation, retrying transient filesystem errors a bounded number of times.

    Non-transient errors propagate immediately. The delay doubles after each
    failed attempt.

    Args:
        operation: Zero-argument callable performing the I/O.
        attempts: Total number of attempts (at least 1).
        delay: Initial delay in seconds between attempts.
        description: Human-readable label for log messages.

    Returns:
        Whatever operation returns.

    Raises:
        OSError: Last error if all attempts fail, or first non-transient error.

    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return operation()
        except OSError as e:
            if not is_transient_io_error(e) or attempt == attempts - 1:
                raise
            wait = delay * (2**attempt)
            logger.debug(
                "Transient error during %s (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt + 1,
                attempts,
                e,
                wait,
            )
            time.sleep(wait)
    raise AssertionError("unreachable")  # pragma: no cover


def read_bytes(path: Path, attempts: int = 3, delay: float = 0.05) -> bytes:
    """Read a file's bytes, retrying transient errors.

    Raises:
        OSError: If the file cannot be read.

    """
    return retry_transient(path.read_bytes, attempts, delay, f"read of {path}")


def compute_checksum(content: bytes) -> str:
    """Return the SHA-256 hex digest of content."""
    return hashlib.sha256(content).hexdigest()


def _fsync_directory(directory: Path) -> None:
    """Flush directory entry changes to disk (POSIX only, best effort)."""
    if os.name != "posix":
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        with contextlib.suppress(OSError):
            os.fsync(fd)
    finally:
        os.close(fd)


def _write_once(path: Path, data: bytes, mode: int | None) -> None:
    """Single attempt of the temp-file + replace sequence."""
    # Use PID to prevent temp file collisions in concurrent writes
    temp_path = path.parent / f".{path.name}.{os.getpid()}.tmp"

    if mode is None:
        try:
            mode = path.stat().st_mode & 0o777
        except FileNotFoundError:
            mode = DEFAULT_FILE_MODE

    try:
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        # umask may have narrowed the requested mode
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        # Cleanup temp file on any failure, interruption included
        with contextlib.suppress(OSError):
            if temp_path.exists():
                temp_path.unlink()
        raise

    _fsync_directory(path.parent)


def atomic_write(
    path: Path,
    content: str | bytes,
    *,
    mode: int | None = None,
    attempts: int = 3,
    delay: float = 0.05,
) -> None:
    """Write content to path atomically using temp file + os.replace.

    The temp file lives in the same directory as path so the final rename
    never crosses filesystems. Content is fsynced before the rename, and the
    directory entry afterwards. Permissions of an existing target are kept
    unless mode is given; new files default to 0600.

    Args:
        path: Target file path.
        content: Text (UTF-8 encoded) or raw bytes to write.
        mode: Explicit permission bits for the result.
        attempts: Total attempts for transient errors.
        delay: Initial retry delay in seconds.

    Raises:
        OSError: If write fails.

    """
    data = content.encode("utf-8") if isinstance(content, str) else content

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    retry_transient(
        lambda: _write_once(path, data, mode),
        attempts,
        delay,
        f"atomic write of {path}",
    )
