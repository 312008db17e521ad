"""Restore the live configuration document from a stored backup.

A restore moves through Looked-Up, then optionally Verified and
Safety-Snapshotted, and finally Committed. Any gate can abort it; all gates
run strictly before the single atomic write, so an aborted restore leaves the
live document byte-identical.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from confkeeper.core.exceptions import BackupNotFoundError, ConfigIOError, ConfigValidationError
from confkeeper.core.io import atomic_write
from confkeeper.lifecycle.backup import BackupCreator, BackupRecord

if TYPE_CHECKING:
    from confkeeper.lifecycle.backup import BackupStore

logger = logging.getLogger(__name__)


class RestoreCoordinator:
    """Sequences verification, safety snapshot and commit for a restore."""

    def __init__(self, store: BackupStore) -> None:
        self.store = store

    def restore(
        self,
        backup_id: str,
        verify: bool = True,
        create_backup: bool = True,
    ) -> BackupRecord | None:
        """Replace the live document with the content of a backup.

        The whole sequence runs under the store's mutation lock, so the safety
        snapshot always captures the state immediately preceding the write.

        Args:
            backup_id: Backup to restore.
            verify: Verify checksum and schema before writing.
            create_backup: Snapshot the current live document first. Skipped
                when there is no live document yet.

        Returns:
            The safety backup record, or None if none was taken.

        Raises:
            BackupNotFoundError: If the id is unknown.
            ConfigValidationError: If verification fails (nothing is written).
            ConfigIOError: If the safety snapshot or the write fails; the live
                document is unchanged.

        """
        settings = self.store.settings
        live_path = settings.config_path

        with self.store.lock.hold():
            record = self.store.get_backup(backup_id)
            if record is None:
                raise BackupNotFoundError(backup_id)

            if verify:
                result = self.store.verify_backup(backup_id)
                if not result.valid:
                    logger.warning("Refusing to restore %s: verification failed", backup_id)
                    raise ConfigValidationError(
                        f"Backup {backup_id} failed verification", result.errors
                    )

            content = self.store.read_snapshot(backup_id)

            safety: BackupRecord | None = None
            if create_backup and live_path.exists():
                safety = self.store.create_backup(
                    description=f"Auto-backup before restore of {backup_id}",
                    created_by=BackupCreator.AUTOMATIC_PRE_RESTORE,
                )

            try:
                atomic_write(
                    live_path,
                    content,
                    attempts=settings.io_retries,
                    delay=settings.io_retry_delay,
                )
            except OSError as e:
                raise ConfigIOError(f"Failed to write {live_path}: {e}") from e

        logger.info("Restored configuration from backup %s", backup_id)
        return safety
