"""Migrate legacy KEY=VALUE sources into the structured configuration document.

Migration reads the root-level and service-level legacy sources, maps the
recognized keys onto a baseline document, validates the candidate, and
(unless it is a dry run) commits it as the live document.

Usage:
    from confkeeper.lifecycle.migrator import Migrator, generate_report

    result = Migrator(settings).migrate(dry_run=True)
    print(generate_report(result))
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from confkeeper.core.exceptions import ConfigIOError
from confkeeper.core.io import atomic_write
from confkeeper.lifecycle.backup import BackupCreator, BackupStore
from confkeeper.lifecycle.document import dump_document
from confkeeper.lifecycle.legacy import merge_legacy_sources, read_legacy_source
from confkeeper.lifecycle.schema import DEFAULT_SCHEMA_VERSION, NODE_ENVS, PROVIDER_NAMES
from confkeeper.lifecycle.validator import validate_config

if TYPE_CHECKING:
    from confkeeper.core.settings import Settings

logger = logging.getLogger(__name__)

__all__ = [
    "BASELINE_DOCUMENT",
    "LEGACY_KEY_MAP",
    "MigrationResult",
    "Migrator",
    "build_candidate",
    "generate_report",
]

Coercer = Callable[[str], Any]

_INT_PATTERN = re.compile(r"[+-]?\d+")


def _to_int(value: str) -> int:
    text = value.strip()
    if not _INT_PATTERN.fullmatch(text):
        raise ValueError(f"expected an integer, got {value!r}")
    return int(text)


def _to_float(value: str) -> float:
    try:
        return float(value.strip())
    except ValueError:
        raise ValueError(f"expected a number, got {value!r}") from None


def _to_str(value: str) -> str:
    return value


def _choice(choices: tuple[str, ...]) -> Coercer:
    """Build a coercer accepting one of choices (case-insensitive)."""

    def coerce(value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in choices:
            raise ValueError(f"expected one of {', '.join(choices)}, got {value!r}")
        return normalized

    return coerce


# Legacy key -> (dotted document path, coercion)
LEGACY_KEY_MAP: dict[str, tuple[str, Coercer]] = {
    # Server
    "PORT": ("server.port", _to_int),
    "NODE_ENV": ("server.nodeEnv", _choice(NODE_ENVS)),
    "CORS_ORIGIN": ("server.corsOrigin", _to_str),
    # MikroTik
    "MIKROTIK_HOST": ("mikrotik.host", _to_str),
    "MIKROTIK_PORT": ("mikrotik.port", _to_int),
    "MIKROTIK_USERNAME": ("mikrotik.username", _to_str),
    "MIKROTIK_PASSWORD": ("mikrotik.password", _to_str),
    "MIKROTIK_TIMEOUT": ("mikrotik.timeout", _to_int),
    # LLM
    "LLM_PROVIDER": ("llm.provider", _choice(PROVIDER_NAMES)),
    "ANTHROPIC_API_KEY": ("llm.claude.apiKey", _to_str),
    "CLAUDE_MODEL": ("llm.claude.model", _to_str),
    "LMSTUDIO_ENDPOINT": ("llm.lmstudio.endpoint", _to_str),
    "LMSTUDIO_MODEL": ("llm.lmstudio.model", _to_str),
    "LMSTUDIO_CONTEXT_WINDOW": ("llm.lmstudio.contextWindow", _to_int),
    # Assistant
    "AI_TEMPERATURE": ("assistant.temperature", _to_float),
    "AI_MAX_TOKENS": ("assistant.maxTokens", _to_int),
    "AI_SYSTEM_PROMPT": ("assistant.systemPrompt", _to_str),
}

# Starting point for every candidate; device and provider sections come only
# from legacy keys.
BASELINE_DOCUMENT: dict[str, Any] = {
    "version": DEFAULT_SCHEMA_VERSION,
    "server": {"port": 3000, "nodeEnv": "development"},
}

SECRET_KEYS = frozenset({"ANTHROPIC_API_KEY", "MIKROTIK_PASSWORD"})


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of a migration run.

    Attributes:
        success: True iff the candidate validated (and, unless dry run, was committed).
        dry_run: Whether the run was a dry run.
        mapped_keys: Number of legacy keys mapped onto the candidate.
        warnings: Unrecognized or skipped legacy keys, in source order.
        errors: Validation errors when success is False.
        backup_id: Id of the pre-migration safety backup, if one was taken.
        config: The candidate document.
        timestamp: When the run happened (UTC).

    """

    success: bool
    dry_run: bool
    mapped_keys: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    backup_id: str | None = None
    config: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def _set_path(doc: dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    current = doc
    for key in parents:
        current = current.setdefault(key, {})
    current[leaf] = value


def _get_path(doc: dict[str, Any], dotted: str) -> Any:
    current: Any = doc
    for key in dotted.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def build_candidate(entries: dict[str, str]) -> tuple[dict[str, Any], list[str], list[str]]:
    """Map legacy entries onto a copy of the baseline document.

    Args:
        entries: Merged legacy key/value pairs.

    Returns:
        Tuple of (candidate document, mapped legacy keys, warnings).

    """
    doc = copy.deepcopy(BASELINE_DOCUMENT)
    mapped: list[str] = []
    warnings: list[str] = []

    for key, raw in entries.items():
        target = LEGACY_KEY_MAP.get(key)
        if target is None:
            warnings.append(f"Unrecognized legacy key '{key}' ignored")
            continue
        path, coerce = target
        try:
            value = coerce(raw)
        except ValueError as e:
            warnings.append(f"Skipped legacy key '{key}': {e}")
            continue
        _set_path(doc, path, value)
        mapped.append(key)

    return doc, mapped, warnings


class Migrator:
    """Converts legacy sources into the live configuration document.

    Attributes:
        settings: Paths and retry policy for this invocation.
        store: Backup store used for the pre-migration safety snapshot.

    """

    def __init__(self, settings: Settings, store: BackupStore | None = None) -> None:
        self.settings = settings
        self.store = store or BackupStore(settings)

    def migrate(
        self,
        dry_run: bool = False,
        create_backup: bool = True,
        root_env_path: Path | None = None,
        service_env_path: Path | None = None,
    ) -> MigrationResult:
        """Run a migration.

        Args:
            dry_run: Build and validate only; never write or back up.
            create_backup: Snapshot an existing live document before committing.
            root_env_path: Override for the root-level legacy source.
            service_env_path: Override for the service-level legacy source.

        Returns:
            MigrationResult. A candidate that fails validation yields
            success=False with the violations attached and nothing written.

        Raises:
            ConfigParseError: If a legacy source contains a malformed line.
            ConfigIOError: If a source cannot be read, or the safety snapshot
                or commit fails (the live document is then unchanged).

        """
        settings = self.settings
        root_source = read_legacy_source(
            root_env_path or settings.root_env_path,
            settings.io_retries,
            settings.io_retry_delay,
        )
        service_source = read_legacy_source(
            service_env_path or settings.service_env_path,
            settings.io_retries,
            settings.io_retry_delay,
        )
        entries = merge_legacy_sources(root_source, service_source)

        candidate, mapped, warnings = build_candidate(entries)
        for warning in warnings:
            logger.warning("%s", warning)

        validation = validate_config(candidate)
        if not validation.valid:
            logger.warning("Migrated configuration is invalid, nothing written")
            return MigrationResult(
                success=False,
                dry_run=dry_run,
                mapped_keys=len(mapped),
                warnings=warnings,
                errors=validation.errors,
                config=candidate,
            )

        if dry_run:
            logger.info("Dry run: %d legacy key(s) mapped, nothing written", len(mapped))
            return MigrationResult(
                success=True,
                dry_run=True,
                mapped_keys=len(mapped),
                warnings=warnings,
                config=candidate,
            )

        backup_id = self._commit(candidate, create_backup)
        return MigrationResult(
            success=True,
            dry_run=False,
            mapped_keys=len(mapped),
            warnings=warnings,
            backup_id=backup_id,
            config=candidate,
        )

    def _commit(self, candidate: dict[str, Any], create_backup: bool) -> str | None:
        """Snapshot the live document if requested, then write the candidate."""
        live_path = self.settings.config_path
        backup_id = None

        with self.store.lock.hold():
            if create_backup and live_path.exists():
                backup_id = self.store.create_backup(
                    description="Auto-backup before migration",
                    created_by=BackupCreator.AUTOMATIC_PRE_MIGRATION,
                ).id

            try:
                atomic_write(
                    live_path,
                    dump_document(candidate),
                    attempts=self.settings.io_retries,
                    delay=self.settings.io_retry_delay,
                )
            except OSError as e:
                raise ConfigIOError(f"Failed to write {live_path}: {e}") from e

        logger.info("Migrated legacy configuration to %s", live_path)
        return backup_id


def _mask(value: Any) -> str:
    if not value:
        return "(not set)"
    text = str(value)
    if len(text) <= 8:
        return "****"
    return f"****{text[-4:]}"


# (label, dotted path, legacy key) shown in the report summary
_REPORT_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("Server Port", "server.port", "PORT"),
    ("Server Environment", "server.nodeEnv", "NODE_ENV"),
    ("MikroTik Host", "mikrotik.host", "MIKROTIK_HOST"),
    ("MikroTik Port", "mikrotik.port", "MIKROTIK_PORT"),
    ("MikroTik Username", "mikrotik.username", "MIKROTIK_USERNAME"),
    ("MikroTik Password", "mikrotik.password", "MIKROTIK_PASSWORD"),
    ("LLM Provider", "llm.provider", "LLM_PROVIDER"),
)

_PROVIDER_REPORT_FIELDS: dict[str, tuple[tuple[str, str, str], ...]] = {
    "claude": (
        ("Claude Model", "llm.claude.model", "CLAUDE_MODEL"),
        ("Anthropic API Key", "llm.claude.apiKey", "ANTHROPIC_API_KEY"),
    ),
    "lmstudio": (
        ("LM Studio Endpoint", "llm.lmstudio.endpoint", "LMSTUDIO_ENDPOINT"),
        ("LM Studio Model", "llm.lmstudio.model", "LMSTUDIO_MODEL"),
    ),
    "cloudflare": (
        ("Cloudflare Account", "llm.cloudflare.accountId", ""),
        ("Cloudflare Model", "llm.cloudflare.model", ""),
    ),
}


def generate_report(result: MigrationResult) -> str:
    """Format a MigrationResult as a human-readable multi-line summary.

    Pure: no I/O, and secrets are masked.
    """
    lines = [
        "=== Configuration Migration Report ===",
        "",
        f"Status: {'SUCCESS' if result.success else 'FAILED'}",
        f"Timestamp: {result.timestamp.isoformat()}",
        f"Mode: {'dry run (no files were modified)' if result.dry_run else 'commit'}",
        f"Mapped keys: {result.mapped_keys}",
    ]
    if result.backup_id:
        lines.append(f"Backup created: {result.backup_id}")
    lines.append("")

    if result.config is not None:
        provider = _get_path(result.config, "llm.provider")
        fields = _REPORT_FIELDS + _PROVIDER_REPORT_FIELDS.get(str(provider), ())
        lines.append("Migrated Configuration:")
        for label, path, legacy_key in fields:
            value = _get_path(result.config, path)
            if legacy_key in SECRET_KEYS:
                shown = _mask(value)
            else:
                shown = "(not set)" if value is None else str(value)
            lines.append(f"- {label}: {shown}")
        lines.append("")

    if result.errors:
        lines.append("Errors:")
        lines.extend(f"  - {err}" for err in result.errors)
        lines.append("")

    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  - {warn}" for warn in result.warnings)
        lines.append("")

    lines.append("Next Steps:")
    if result.success and result.dry_run:
        lines.append("1. Review the configuration above")
        lines.append("2. Run the migration again without --dry-run to apply it")
    elif result.success:
        lines.append("1. Review the generated config.json file")
        lines.append("2. Test the service with the new configuration")
        lines.append("3. Once verified, the legacy .env files can be removed")
    else:
        lines.append("1. Review the errors above")
        lines.append("2. Fix the legacy .env files")
        lines.append("3. Run the migration again")

    return "\n".join(lines)
