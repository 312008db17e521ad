"""Backup store for the live configuration document.

Each backup is an immutable snapshot of the live document's raw bytes plus a
metadata file carrying its checksum:

    <backup_dir>/<id>.json        snapshot (byte-identical copy, mode 0600)
    <backup_dir>/<id>.meta.json   metadata (id, created, size, checksum, ...)

Records are append-only. Creating one takes the mutation lock; listing,
stats and verification are lock-free reads.

Usage:
    from confkeeper.core.settings import load_settings
    from confkeeper.lifecycle.backup import BackupStore

    store = BackupStore(load_settings(root))
    record = store.create_backup(description="before upgrade")
    result = store.verify_backup(record.id)
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, ValidationError

from confkeeper.core.exceptions import (
    BackupIntegrityError,
    BackupNotFoundError,
    ConfigIOError,
    ConfigParseError,
    ConfigValidationError,
    ConfkeeperError,
)
from confkeeper.core.io import atomic_write, compute_checksum, get_timestamp, read_bytes
from confkeeper.core.locking import MutationLock
from confkeeper.lifecycle.document import parse_document, read_document_bytes
from confkeeper.lifecycle.validator import validate_config

if TYPE_CHECKING:
    from confkeeper.core.settings import Settings

logger = logging.getLogger(__name__)

__all__ = [
    "BackupCreator",
    "BackupMetadata",
    "BackupRecord",
    "BackupStats",
    "BackupStore",
    "VerificationResult",
]

SNAPSHOT_SUFFIX = ".json"
METADATA_SUFFIX = ".meta.json"
CHECKSUM_ALGORITHM = "sha256"
UNKNOWN_VERSION = "unknown"

# Backup ids double as file names; anything else is rejected as unknown
_BACKUP_ID_PATTERN = re.compile(r"^config-[A-Za-z0-9][A-Za-z0-9-]*$")


class BackupCreator(str, Enum):
    """Who (or what) created a backup."""

    MANUAL = "manual"
    AUTOMATIC_PRE_RESTORE = "automatic-pre-restore"
    AUTOMATIC_PRE_MIGRATION = "automatic-pre-migration"


class BackupMetadata(BaseModel):
    """Descriptive metadata stored alongside a snapshot.

    Attributes:
        version: Schema version found in the snapshot ("unknown" if unparsable).
        description: Free-text description.
        created_by: Creator tag.

    """

    model_config = ConfigDict(frozen=True)

    version: str
    description: str | None = None
    created_by: BackupCreator = BackupCreator.MANUAL


class BackupRecord(BaseModel):
    """Immutable point-in-time snapshot of the live document.

    Attributes:
        id: Unique backup identifier.
        created: UTC creation time.
        path: Snapshot file location.
        size: Snapshot size in bytes.
        checksum: SHA-256 hex digest of the snapshot bytes.
        metadata: Version, description and creator tag.

    """

    model_config = ConfigDict(frozen=True)

    id: str
    created: datetime
    path: Path
    size: int
    checksum: str
    metadata: BackupMetadata


@dataclass(frozen=True)
class BackupStats:
    """Aggregate figures over all stored backups."""

    total_backups: int = 0
    total_size: int = 0
    newest_backup: datetime | None = None
    oldest_backup: datetime | None = None


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a backup integrity check; valid iff errors is empty."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def _snapshot_version(content: bytes) -> str:
    """Extract the schema version from raw snapshot content, if possible."""
    try:
        doc = parse_document(content)
    except ConfigParseError as e:
        logger.warning("Live configuration is not valid JSON, snapshotting anyway: %s", e)
        return UNKNOWN_VERSION
    if isinstance(doc, dict) and isinstance(doc.get("version"), str):
        return str(doc["version"])
    return UNKNOWN_VERSION


class BackupStore:
    """Append-only collection of checksummed snapshots of the live document.

    Attributes:
        settings: Paths and retry policy for this invocation.
        lock: Mutation lock shared with the restore coordinator and migrator.

    """

    def __init__(self, settings: Settings, lock: MutationLock | None = None) -> None:
        """Initialize the store.

        Args:
            settings: Resolved settings.
            lock: Mutation lock; one is created from settings if omitted.

        """
        self.settings = settings
        self.lock = lock or MutationLock(
            settings.lock_path,
            attempts=settings.lock_attempts,
            delay=settings.lock_retry_delay,
        )

    @property
    def backup_dir(self) -> Path:
        """Directory holding snapshots and metadata."""
        return self.settings.backup_path

    def _snapshot_path(self, backup_id: str) -> Path:
        return self.backup_dir / f"{backup_id}{SNAPSHOT_SUFFIX}"

    def _metadata_path(self, backup_id: str) -> Path:
        return self.backup_dir / f"{backup_id}{METADATA_SUFFIX}"

    def _read(self, path: Path) -> bytes:
        return read_bytes(path, self.settings.io_retries, self.settings.io_retry_delay)

    def _write(self, path: Path, content: str | bytes) -> None:
        atomic_write(
            path,
            content,
            mode=0o600,
            attempts=self.settings.io_retries,
            delay=self.settings.io_retry_delay,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _discard(self, backup_id: str) -> None:
        """Remove any artifact of a failed create."""
        for path in (self._metadata_path(backup_id), self._snapshot_path(backup_id)):
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)

    def _store_snapshot(
        self,
        content: bytes,
        description: str | None,
        created_by: BackupCreator,
    ) -> BackupRecord:
        """Persist content as a new record; caller holds the lock."""
        now = datetime.now(UTC)
        backup_id = f"config-{get_timestamp(now)}-{uuid4().hex[:8]}"
        record = BackupRecord(
            id=backup_id,
            created=now,
            path=self._snapshot_path(backup_id),
            size=len(content),
            checksum=compute_checksum(content),
            metadata=BackupMetadata(
                version=_snapshot_version(content),
                description=description,
                created_by=created_by,
            ),
        )
        payload = record.model_dump(mode="json", exclude={"path"})
        payload["algorithm"] = CHECKSUM_ALGORITHM

        try:
            # Snapshot first: metadata is what makes a record visible
            self._write(record.path, content)
            self._write(self._metadata_path(backup_id), json.dumps(payload, indent=2) + "\n")
        except BaseException as e:
            self._discard(backup_id)
            if isinstance(e, OSError):
                raise ConfigIOError(f"Failed to create backup: {e}") from e
            raise

        logger.info(
            "Created backup %s (%d bytes, %s)",
            backup_id,
            record.size,
            created_by.value,
        )
        return record

    def create_backup(
        self,
        description: str | None = None,
        created_by: BackupCreator = BackupCreator.MANUAL,
    ) -> BackupRecord:
        """Snapshot the current live document.

        Args:
            description: Free-text description.
            created_by: Creator tag.

        Returns:
            The new record, with size and creation time resolved.

        Raises:
            ConfigIOError: If the live document cannot be read or the snapshot
                cannot be persisted (no partial artifacts remain).
            MutationLockError: If another mutation holds the lock.

        """
        live_path = self.settings.config_path
        # A missing live document must not create the backup directory
        if not live_path.exists():
            raise ConfigIOError(f"Live configuration not found: {live_path}")

        with self.lock.hold():
            try:
                content = self._read(live_path)
            except FileNotFoundError as e:
                raise ConfigIOError(f"Live configuration not found: {live_path}") from e
            except OSError as e:
                raise ConfigIOError(f"Cannot read live configuration {live_path}: {e}") from e

            return self._store_snapshot(content, description, created_by)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _load_record(self, backup_id: str) -> BackupRecord | None:
        """Load a record from its metadata file.

        Returns:
            The record, or None if no metadata file exists.

        Raises:
            BackupIntegrityError: If the metadata file is unreadable or corrupt.

        """
        metadata_path = self._metadata_path(backup_id)
        try:
            raw = self._read(metadata_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackupIntegrityError(f"Cannot read metadata for {backup_id}: {e}") from e

        try:
            data: dict[str, Any] = json.loads(raw.decode("utf-8"))
            if not isinstance(data, dict):
                raise ValueError("metadata must be a JSON object")
            record = BackupRecord.model_validate({**data, "path": self._snapshot_path(backup_id)})
        except (UnicodeDecodeError, ValueError, ValidationError) as e:
            raise BackupIntegrityError(f"Corrupt metadata for {backup_id}: {e}") from e

        if record.id != backup_id:
            raise BackupIntegrityError(
                f"Metadata for {backup_id} names a different backup: {record.id}"
            )
        return record

    def get_backup(self, backup_id: str) -> BackupRecord | None:
        """Look up a single record.

        Returns:
            The record, or None if the id is unknown or malformed.

        Raises:
            BackupIntegrityError: If the record's metadata is corrupt.

        """
        if not _BACKUP_ID_PATTERN.match(backup_id):
            return None
        return self._load_record(backup_id)

    def list_backups(self) -> list[BackupRecord]:
        """List all readable records, newest first.

        Records with unreadable metadata are skipped with a warning.
        """
        if not self.backup_dir.is_dir():
            return []

        records: list[BackupRecord] = []
        for metadata_path in self.backup_dir.glob(f"config-*{METADATA_SUFFIX}"):
            backup_id = metadata_path.name[: -len(METADATA_SUFFIX)]
            if not _BACKUP_ID_PATTERN.match(backup_id):
                continue
            try:
                record = self._load_record(backup_id)
            except ConfkeeperError as e:
                logger.warning("Skipping invalid backup %s: %s", backup_id, e)
                continue
            if record is not None:
                records.append(record)

        records.sort(key=lambda r: (r.created, r.id), reverse=True)
        return records

    def get_stats(self) -> BackupStats:
        """Compute aggregate statistics by scanning all records."""
        backups = self.list_backups()
        if not backups:
            return BackupStats()
        return BackupStats(
            total_backups=len(backups),
            total_size=sum(b.size for b in backups),
            newest_backup=backups[0].created,
            oldest_backup=backups[-1].created,
        )

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify_backup(self, backup_id: str) -> VerificationResult:
        """Check a backup's checksum, parseability and schema validity.

        Args:
            backup_id: Backup to verify.

        Returns:
            VerificationResult with every problem found.

        Raises:
            BackupNotFoundError: If the id is unknown.
            ConfigIOError: If the snapshot exists but cannot be read.

        """
        try:
            record = self.get_backup(backup_id)
        except BackupIntegrityError as e:
            return VerificationResult(valid=False, errors=[str(e)])
        if record is None:
            raise BackupNotFoundError(backup_id)

        try:
            content = self._read(record.path)
        except FileNotFoundError:
            return VerificationResult(
                valid=False,
                errors=[f"Integrity violation: snapshot file missing: {record.path}"],
            )
        except OSError as e:
            raise ConfigIOError(f"Cannot read snapshot {record.path}: {e}") from e

        errors: list[str] = []
        actual = compute_checksum(content)
        if actual != record.checksum:
            errors.append(
                f"Integrity violation: checksum mismatch "
                f"(recorded {record.checksum[:12]}, actual {actual[:12]})"
            )

        try:
            doc = parse_document(content, source=record.path)
        except ConfigParseError as e:
            errors.append(f"Snapshot is not parseable: {e}")
        else:
            errors.extend(validate_config(doc).errors)

        if errors:
            logger.debug("Backup %s failed verification: %s", backup_id, errors)
        return VerificationResult(valid=not errors, errors=errors)

    def read_snapshot(self, backup_id: str) -> bytes:
        """Return the raw bytes of a backup's snapshot.

        Raises:
            BackupNotFoundError: If the id is unknown.
            ConfigIOError: If the snapshot cannot be read.

        """
        record = self.get_backup(backup_id)
        if record is None:
            raise BackupNotFoundError(backup_id)
        try:
            return self._read(record.path)
        except OSError as e:
            raise ConfigIOError(f"Cannot read snapshot {record.path}: {e}") from e

    # ------------------------------------------------------------------
    # Restore, export, import
    # ------------------------------------------------------------------

    def restore_backup(
        self,
        backup_id: str,
        verify: bool = True,
        create_backup: bool = True,
    ) -> BackupRecord | None:
        """Replace the live document with a backup's content.

        See RestoreCoordinator.restore for the exact sequencing.

        Returns:
            The safety backup taken before the restore, if any.

        """
        # Import here to avoid circular imports
        from confkeeper.lifecycle.restore import RestoreCoordinator

        return RestoreCoordinator(self).restore(
            backup_id, verify=verify, create_backup=create_backup
        )

    def export_backup(self, backup_id: str, destination: Path) -> Path:
        """Copy a backup's snapshot to destination after checking its checksum.

        Raises:
            BackupNotFoundError: If the id is unknown.
            BackupIntegrityError: If the snapshot no longer matches its checksum.
            ConfigIOError: If reading or writing fails.

        """
        record = self.get_backup(backup_id)
        if record is None:
            raise BackupNotFoundError(backup_id)
        content = self.read_snapshot(backup_id)
        if compute_checksum(content) != record.checksum:
            raise BackupIntegrityError(f"Backup {backup_id} does not match its recorded checksum")

        try:
            self._write(destination, content)
        except OSError as e:
            raise ConfigIOError(f"Cannot write export {destination}: {e}") from e
        logger.info("Exported backup %s to %s", backup_id, destination)
        return destination

    def import_backup(self, source: Path, description: str | None = None) -> BackupRecord:
        """Store an external document as a new manual backup.

        The source is read once; exactly the bytes that pass validation are
        stored.

        Raises:
            ConfigIOError: If the source cannot be read or the record persisted.
            ConfigParseError: If the source is not valid JSON.
            ConfigValidationError: If the source violates the schema.

        """
        content = read_document_bytes(
            source, self.settings.io_retries, self.settings.io_retry_delay
        )
        result = validate_config(parse_document(content, source=source))
        if not result.valid:
            raise ConfigValidationError("Imported configuration is invalid", result.errors)

        with self.lock.hold():
            return self._store_snapshot(
                content,
                description or "Imported configuration",
                BackupCreator.MANUAL,
            )
