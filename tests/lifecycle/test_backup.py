"""Tests for the backup store.

Tests cover:
- create_backup: byte-identical snapshot, metadata, permissions, failures
- list_backups / get_backup / get_stats
- verify_backup: fresh, tampered, unparsable, schema-invalid, missing
- export_backup / import_backup
- Independent stores on one root serialize their writes
"""

import errno
import json
import logging
import stat
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from confkeeper.core.exceptions import (
    BackupIntegrityError,
    BackupNotFoundError,
    ConfigIOError,
    ConfigParseError,
    ConfigValidationError,
)
from confkeeper.core.io import compute_checksum
from confkeeper.core.settings import Settings
from confkeeper.lifecycle.backup import BackupCreator, BackupStats, BackupStore


def _snapshot_files(settings: Settings) -> list[Path]:
    if not settings.backup_path.exists():
        return []
    return sorted(p for p in settings.backup_path.iterdir() if p.name.startswith("config-"))


class TestCreateBackup:
    """Tests for BackupStore.create_backup()."""

    def test_snapshot_is_byte_identical(self, store: BackupStore, live_config: bytes) -> None:
        """The snapshot holds exactly the live document's bytes."""
        record = store.create_backup()

        assert record.path.read_bytes() == live_config
        assert record.size == len(live_config)
        assert record.checksum == compute_checksum(live_config)

    def test_record_metadata(self, store: BackupStore, live_config: bytes) -> None:
        """Description, creator and document version are recorded."""
        record = store.create_backup(
            description="before upgrade",
            created_by=BackupCreator.AUTOMATIC_PRE_RESTORE,
        )

        assert record.id.startswith("config-")
        assert record.created.tzinfo is not None
        assert record.metadata.version == "1.0.0"
        assert record.metadata.description == "before upgrade"
        assert record.metadata.created_by is BackupCreator.AUTOMATIC_PRE_RESTORE

    def test_metadata_file_written(
        self, store: BackupStore, settings: Settings, live_config: bytes
    ) -> None:
        """Metadata is persisted next to the snapshot."""
        record = store.create_backup(description="x")

        meta = json.loads((settings.backup_path / f"{record.id}.meta.json").read_text())
        assert meta["id"] == record.id
        assert meta["checksum"] == record.checksum
        assert meta["algorithm"] == "sha256"
        assert meta["metadata"]["created_by"] == "manual"

    def test_snapshot_is_owner_only(self, store: BackupStore, live_config: bytes) -> None:
        """Snapshots may contain secrets and are written 0600."""
        record = store.create_backup()
        assert stat.S_IMODE(record.path.stat().st_mode) == 0o600

    def test_ids_are_unique(self, store: BackupStore, live_config: bytes) -> None:
        """Back-to-back backups get distinct ids."""
        ids = {store.create_backup().id for _ in range(5)}
        assert len(ids) == 5

    def test_unparsable_live_document_still_snapshotted(
        self, store: BackupStore, settings: Settings
    ) -> None:
        """A broken live document can still be backed up, with unknown version."""
        settings.config_path.write_bytes(b"{not json")

        record = store.create_backup()

        assert record.path.read_bytes() == b"{not json"
        assert record.metadata.version == "unknown"

    def test_missing_live_document(self, store: BackupStore, settings: Settings) -> None:
        """No live document means an I/O error and nothing stored."""
        with pytest.raises(ConfigIOError, match="not found"):
            store.create_backup()

        assert _snapshot_files(settings) == []
        assert not settings.backup_path.exists()

    def test_failed_metadata_write_leaves_nothing(
        self, store: BackupStore, settings: Settings, live_config: bytes
    ) -> None:
        """If persisting metadata fails, the snapshot is removed too."""
        from confkeeper.core import io as io_module

        real_write = io_module.atomic_write

        def failing_write(path: Path, content: Any, **kwargs: Any) -> None:
            if path.name.endswith(".meta.json"):
                raise OSError(errno.ENOSPC, "No space left on device")
            real_write(path, content, **kwargs)

        with (
            patch("confkeeper.lifecycle.backup.atomic_write", side_effect=failing_write),
            pytest.raises(ConfigIOError, match="Failed to create backup"),
        ):
            store.create_backup()

        assert _snapshot_files(settings) == []
        assert store.list_backups() == []

    def test_lock_released_after_create(
        self, store: BackupStore, settings: Settings, live_config: bytes
    ) -> None:
        """The mutation lock file does not outlive the operation."""
        store.create_backup()
        assert not settings.lock_path.exists()


class TestListAndGet:
    """Tests for list_backups(), get_backup() and get_stats()."""

    def test_empty_store(self, store: BackupStore) -> None:
        """An empty store lists nothing and has zero stats."""
        assert store.list_backups() == []
        assert store.get_stats() == BackupStats(
            total_backups=0, total_size=0, newest_backup=None, oldest_backup=None
        )

    def test_newest_first(self, store: BackupStore, live_config: bytes) -> None:
        """Records are ordered by creation time, newest first."""
        first = store.create_backup(description="first")
        second = store.create_backup(description="second")
        third = store.create_backup(description="third")

        assert [r.id for r in store.list_backups()] == [third.id, second.id, first.id]

    def test_stats(self, store: BackupStore, live_config: bytes) -> None:
        """Stats aggregate count, size and time range."""
        first = store.create_backup()
        second = store.create_backup()

        stats = store.get_stats()

        assert stats.total_backups == 2
        assert stats.total_size == first.size + second.size
        assert stats.newest_backup == second.created
        assert stats.oldest_backup == first.created

    def test_get_backup_roundtrip(self, store: BackupStore, live_config: bytes) -> None:
        """get_backup returns the stored record."""
        record = store.create_backup(description="lookup")
        assert store.get_backup(record.id) == record

    def test_get_unknown_backup(self, store: BackupStore) -> None:
        """Unknown ids are absent."""
        assert store.get_backup("config-20250101T000000000000Z-deadbeef") is None

    @pytest.mark.parametrize("bad_id", ["../config", "config-../../etc/passwd", "", "x"])
    def test_malformed_ids_are_absent(self, store: BackupStore, bad_id: str) -> None:
        """Ids that are not well-formed never touch the filesystem."""
        assert store.get_backup(bad_id) is None

    def test_corrupt_metadata_raises(
        self, store: BackupStore, settings: Settings, live_config: bytes
    ) -> None:
        """Metadata that exists but cannot be read is an integrity error."""
        record = store.create_backup()
        (settings.backup_path / f"{record.id}.meta.json").write_text("{broken")

        with pytest.raises(BackupIntegrityError):
            store.get_backup(record.id)

    def test_corrupt_metadata_skipped_in_listing(
        self,
        store: BackupStore,
        settings: Settings,
        live_config: bytes,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """One bad record does not hide the others."""
        good = store.create_backup()
        bad = store.create_backup()
        (settings.backup_path / f"{bad.id}.meta.json").write_text("[]")

        assert [r.id for r in store.list_backups()] == [good.id]
        assert bad.id in caplog.text

    def test_records_survive_new_store_instance(
        self, settings: Settings, live_config: bytes
    ) -> None:
        """Records are read back from disk, not from memory."""
        record = BackupStore(settings).create_backup(description="persisted")
        reloaded = BackupStore(settings).get_backup(record.id)

        assert reloaded is not None
        assert reloaded.checksum == record.checksum
        assert reloaded.created == record.created
        assert reloaded.metadata.description == "persisted"


class TestVerifyBackup:
    """Tests for verify_backup()."""

    def test_fresh_backup_is_valid(self, store: BackupStore, live_config: bytes) -> None:
        """A freshly created backup of a valid document verifies cleanly."""
        record = store.create_backup()

        result = store.verify_backup(record.id)

        assert result.valid is True
        assert result.errors == []

    def test_tampered_snapshot(self, store: BackupStore, live_config: bytes) -> None:
        """Changing the snapshot bytes is an integrity violation."""
        record = store.create_backup()
        record.path.write_bytes(live_config.replace(b"3000", b"3001"))

        result = store.verify_backup(record.id)

        assert result.valid is False
        assert any("Integrity violation" in err for err in result.errors)

    def test_unparsable_snapshot(self, store: BackupStore, settings: Settings) -> None:
        """A snapshot that is not JSON is reported as unparseable."""
        settings.config_path.write_text("{oops")
        record = store.create_backup()

        result = store.verify_backup(record.id)

        assert not result.valid
        assert any("not parseable" in err for err in result.errors)
        assert not any("Integrity violation" in err for err in result.errors)

    def test_schema_invalid_snapshot(
        self, store: BackupStore, settings: Settings, valid_config: dict[str, Any]
    ) -> None:
        """Schema violations of the snapshot are folded into errors."""
        del valid_config["server"]["port"]
        settings.config_path.write_text(json.dumps(valid_config))
        record = store.create_backup()

        result = store.verify_backup(record.id)

        assert not result.valid
        assert any(err.startswith("server.port:") for err in result.errors)

    def test_missing_snapshot_file(self, store: BackupStore, live_config: bytes) -> None:
        """A deleted snapshot is an integrity violation."""
        record = store.create_backup()
        record.path.unlink()

        result = store.verify_backup(record.id)

        assert not result.valid
        assert "missing" in result.errors[0]

    def test_unknown_id(self, store: BackupStore) -> None:
        """Verifying an unknown backup is a not-found error."""
        with pytest.raises(BackupNotFoundError) as exc_info:
            store.verify_backup("config-20250101T000000000000Z-00000000")
        assert exc_info.value.kind == "not_found"

    def test_verify_takes_no_lock(
        self, store: BackupStore, settings: Settings, live_config: bytes
    ) -> None:
        """Verification works while another process holds the mutation lock."""
        record = store.create_backup()
        settings.lock_path.write_text("4242\n2026-01-01T00:00:00+00:00\n")

        with patch("confkeeper.core.locking._is_pid_alive", return_value=True):
            assert store.verify_backup(record.id).valid
            assert len(store.list_backups()) == 1


class TestExportImport:
    """Tests for export_backup() and import_backup()."""

    def test_export_copies_bytes(
        self, store: BackupStore, live_config: bytes, tmp_path: Path
    ) -> None:
        """Exported file matches the snapshot."""
        record = store.create_backup()
        dest = tmp_path / "out" / "exported.json"

        assert store.export_backup(record.id, dest) == dest
        assert dest.read_bytes() == live_config

    def test_export_tampered_refused(
        self, store: BackupStore, live_config: bytes, tmp_path: Path
    ) -> None:
        """A snapshot that fails its checksum is not exported."""
        record = store.create_backup()
        record.path.write_bytes(b"{}")

        with pytest.raises(BackupIntegrityError):
            store.export_backup(record.id, tmp_path / "exported.json")
        assert not (tmp_path / "exported.json").exists()

    def test_export_unknown(self, store: BackupStore, tmp_path: Path) -> None:
        """Exporting an unknown backup is a not-found error."""
        with pytest.raises(BackupNotFoundError):
            store.export_backup("config-20250101T000000000000Z-00000000", tmp_path / "x.json")

    def test_import_valid_document(
        self, store: BackupStore, valid_config: dict[str, Any], tmp_path: Path
    ) -> None:
        """A valid external document becomes a manual backup with its exact bytes."""
        source = tmp_path / "external.json"
        source.write_text(json.dumps(valid_config))

        record = store.import_backup(source, description="from staging")

        assert record.path.read_bytes() == source.read_bytes()
        assert record.metadata.created_by is BackupCreator.MANUAL
        assert record.metadata.description == "from staging"
        assert store.verify_backup(record.id).valid

    def test_import_invalid_document(
        self, store: BackupStore, valid_config: dict[str, Any], tmp_path: Path
    ) -> None:
        """Schema-invalid documents are rejected with their violations."""
        valid_config["llm"] = {"provider": "claude"}
        source = tmp_path / "external.json"
        source.write_text(json.dumps(valid_config))

        with pytest.raises(ConfigValidationError) as exc_info:
            store.import_backup(source)

        assert "llm.claude.model: Required when provider is 'claude'" in exc_info.value.errors
        assert store.list_backups() == []

    def test_import_unparsable(self, store: BackupStore, tmp_path: Path) -> None:
        """Non-JSON input is a parse error."""
        source = tmp_path / "external.json"
        source.write_text("not json")
        with pytest.raises(ConfigParseError):
            store.import_backup(source)

    def test_import_missing(self, store: BackupStore, tmp_path: Path) -> None:
        """A missing source is an I/O error."""
        with pytest.raises(ConfigIOError):
            store.import_backup(tmp_path / "missing.json")

    def test_import_stores_the_validated_bytes(
        self, store: BackupStore, valid_config: dict[str, Any], tmp_path: Path
    ) -> None:
        """A source rewritten after validation does not change what is stored."""
        from confkeeper.lifecycle import document

        source = tmp_path / "external.json"
        validated = json.dumps(valid_config).encode("utf-8")
        source.write_bytes(validated)
        real_read = document.read_bytes

        def read_then_rewrite(path: Path, *args: Any) -> bytes:
            content = real_read(path, *args)
            if path == source:
                source.write_text('{"not": "valid"}')
            return content

        with patch("confkeeper.lifecycle.document.read_bytes", side_effect=read_then_rewrite):
            record = store.import_backup(source)

        assert record.path.read_bytes() == validated
        assert store.verify_backup(record.id).valid


def test_created_timestamps_are_utc(store: BackupStore, live_config: bytes) -> None:
    """Creation times are timezone-aware UTC and close to now."""
    before = datetime.now(UTC)
    record = store.create_backup()
    after = datetime.now(UTC)

    assert before <= record.created <= after
    assert record.created.utcoffset().total_seconds() == 0


def test_independent_stores_serialize_creates(
    tmp_path: Path, valid_config: dict[str, Any], caplog: pytest.LogCaptureFixture
) -> None:
    """Stores built separately for one root never reclaim each other's lock."""
    settings = Settings(
        root=tmp_path, lock_attempts=500, lock_retry_delay=0.01, io_retry_delay=0.0
    )
    settings.config_path.write_text(json.dumps(valid_config))
    failures: list[Exception] = []

    def worker(store: BackupStore) -> None:
        try:
            for _ in range(5):
                store.create_backup()
        except Exception as e:  # noqa: BLE001
            failures.append(e)

    with caplog.at_level(logging.WARNING):
        threads = [
            threading.Thread(target=worker, args=(BackupStore(settings),)) for _ in range(3)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    assert failures == []
    assert len(BackupStore(settings).list_backups()) == 15
    assert "stale lock" not in caplog.text.lower()
    assert not settings.lock_path.exists()
