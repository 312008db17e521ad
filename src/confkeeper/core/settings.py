"""Tool settings: where the live document, backups and legacy sources live.

Settings are an explicit value built once per process invocation and passed to
each component at construction. They are loaded from an optional YAML file
(``confkeeper.yaml`` in the root directory) layered over model defaults.

Usage:
    from confkeeper.core.settings import load_settings

    settings = load_settings(Path("/srv/assistant"))
    print(settings.config_path)  # /srv/assistant/config.json
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from confkeeper.core.exceptions import SettingsError

logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME: str = "confkeeper.yaml"
MAX_SETTINGS_SIZE: int = 1_048_576  # 1MB - protection against YAML bombs


class Settings(BaseModel):
    """Resolved locations and retry policy for one invocation.

    Relative paths are interpreted against ``root``.

    Attributes:
        root: Deployment root directory.
        config_file: Live configuration document.
        backup_dir: Directory holding snapshots and their metadata.
        root_env_file: Root-level legacy KEY=VALUE source.
        service_env_file: Service-level legacy KEY=VALUE source (wins on collision).
        io_retries: Attempts for transient filesystem contention.
        io_retry_delay: Initial backoff between attempts, in seconds.
        lock_attempts: Attempts to acquire a held mutation lock.
        lock_retry_delay: Seconds between lock attempts.

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    root: Path = Field(default_factory=Path.cwd)
    config_file: Path = Path("config.json")
    backup_dir: Path = Path(".config-backups")
    root_env_file: Path = Path(".env")
    service_env_file: Path = Path("server") / ".env"
    io_retries: int = Field(3, ge=1, le=10)
    io_retry_delay: float = Field(0.05, ge=0, le=5)
    lock_attempts: int = Field(20, ge=1, le=600)
    lock_retry_delay: float = Field(0.1, ge=0, le=5)

    def _resolve(self, path: Path) -> Path:
        path = path.expanduser()
        return path if path.is_absolute() else self.root / path

    @property
    def config_path(self) -> Path:
        """Absolute path of the live configuration document."""
        return self._resolve(self.config_file)

    @property
    def backup_path(self) -> Path:
        """Absolute path of the backup directory."""
        return self._resolve(self.backup_dir)

    @property
    def root_env_path(self) -> Path:
        """Absolute path of the root-level legacy source."""
        return self._resolve(self.root_env_file)

    @property
    def service_env_path(self) -> Path:
        """Absolute path of the service-level legacy source."""
        return self._resolve(self.service_env_file)

    @property
    def lock_path(self) -> Path:
        """Absolute path of the mutation lock file."""
        return self.backup_path / ".mutation.lock"


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load and parse a settings YAML file with safety checks.

    Raises:
        SettingsError: If file cannot be read, is too large, or is not a mapping.

    """
    try:
        # Read with size limit to avoid stat-then-read races
        with path.open("r", encoding="utf-8") as f:
            content = f.read(MAX_SETTINGS_SIZE + 1)

        if len(content) > MAX_SETTINGS_SIZE:
            raise SettingsError(f"Settings file {path} exceeds 1MB limit.")

        parsed = yaml.safe_load(content)
        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise SettingsError(
                f"Settings file {path} must contain a YAML mapping, got {type(parsed).__name__}."
            )
        return parsed
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {path}: {e}") from e
    except IsADirectoryError as e:
        raise SettingsError(f"{path} is a directory, not a settings file.") from e
    except OSError as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e


def load_settings(root: Path | None = None, settings_path: Path | None = None) -> Settings:
    """Build Settings for one invocation.

    Looks for ``confkeeper.yaml`` in root unless settings_path is given. A
    missing default file is not an error; a missing explicit file is.

    Args:
        root: Deployment root directory. Defaults to the current directory.
        settings_path: Explicit settings file.

    Returns:
        Validated, frozen Settings.

    Raises:
        SettingsError: If the settings file is unreadable or invalid.

    """
    resolved_root = (root or Path.cwd()).expanduser().resolve()

    data: dict[str, Any] = {}
    if settings_path is not None:
        if not settings_path.exists():
            raise SettingsError(f"Settings file not found: {settings_path}")
        data = _load_yaml_file(settings_path)
        logger.debug("Loaded settings from %s", settings_path)
    else:
        default_path = resolved_root / SETTINGS_FILE_NAME
        if default_path.is_file():
            data = _load_yaml_file(default_path)
            logger.debug("Loaded settings from %s", default_path)

    if "root" in data:
        raise SettingsError("'root' cannot be set in a settings file; pass --root instead.")

    try:
        return Settings.model_validate({**data, "root": resolved_root})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise SettingsError(f"Invalid settings: {errors}") from e
