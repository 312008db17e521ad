"""Exception hierarchy for confkeeper.

Every fallible operation surfaces exactly one of these kinds. Components raise
them to their caller; only the CLI layer turns them into a diagnostic and an
exit code.
"""

from pathlib import Path


class ConfkeeperError(Exception):
    """Base exception for all confkeeper errors."""

    kind: str = "error"


class SettingsError(ConfkeeperError):
    """Tool settings file is unreadable or invalid."""

    kind = "settings"


class BackupNotFoundError(ConfkeeperError):
    """Backup identifier does not resolve to a stored record."""

    kind = "not_found"

    def __init__(self, backup_id: str) -> None:
        """Initialize with the unknown backup id.

        Args:
            backup_id: Identifier that was looked up.

        """
        super().__init__(f"Backup not found: {backup_id}")
        self.backup_id = backup_id


class ConfigValidationError(ConfkeeperError):
    """Candidate configuration document violates the schema.

    Attributes:
        errors: Human-readable violation descriptions, in check order.

    """

    kind = "validation"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        """Initialize with message and violation list.

        Args:
            message: Summary message.
            errors: Individual violations.

        """
        self.errors = list(errors or [])
        detail = f": {'; '.join(self.errors)}" if self.errors else ""
        super().__init__(f"{message}{detail}")


class BackupIntegrityError(ConfkeeperError):
    """Stored backup does not match its recorded metadata."""

    kind = "integrity"


class ConfigIOError(ConfkeeperError):
    """Filesystem read or write failed."""

    kind = "io"


class MutationLockError(ConfigIOError):
    """Another mutating operation held the lock for every retry."""


class ConfigParseError(ConfkeeperError):
    """Malformed legacy source or stored document.

    Attributes:
        path: File that failed to parse, if known.
        line: 1-based line number, if known.

    """

    kind = "parse"

    def __init__(self, message: str, path: Path | None = None, line: int | None = None) -> None:
        """Initialize with location details.

        Args:
            message: Description of the problem.
            path: File that failed to parse.
            line: 1-based line number of the offending content.

        """
        location = ""
        if path is not None:
            location = f"{path}:{line}: " if line is not None else f"{path}: "
        super().__init__(f"{location}{message}")
        self.path = path
        self.line = line
