"""Process-wide settings persisted in ``app_config.json``."""

import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from ..models import (
    LANGUAGES,
    AppConfiguration,
    DatabaseState,
    GoldbergState,
    GuiDefaults,
    is_valid_steam_id,
)
from .errors import ConfigError, ValidationError
from .filesystem import FileSystemService

log = structlog.stdlib.get_logger()


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self, is_valid: bool, errors: list[str] | None = None) -> None:
        self.is_valid: bool = is_valid
        self.errors: list[str] = errors or []


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        log.warning("Ignoring unparseable timestamp", value=value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class AppConfigService:
    """Single accessor for ``app_config.json``.

    Every change goes through ``update``, which re-reads the file, applies
    the change and writes the result back while holding an in-process lock.
    Other processes are not coordinated with; the last writer wins.
    """

    def __init__(self, config_path: Path, filesystem: FileSystemService | None = None) -> None:
        self.config_path = config_path
        self._filesystem = filesystem or FileSystemService(config_path.parent)
        self._lock = threading.Lock()
        log.debug("App configuration service initialized", config_path=str(self.config_path))

    def load(self) -> AppConfiguration:
        """Load the configuration, falling back to defaults for anything missing or corrupt."""
        try:
            data = self._filesystem.read_json(self.config_path)
        except OSError as e:
            log.error("Failed to read app configuration, using defaults", path=str(self.config_path), error=str(e))
            return AppConfiguration()

        if data is None:
            log.info("App configuration not found, using defaults", path=str(self.config_path))
            return AppConfiguration()
        if not isinstance(data, dict):
            log.warning("App configuration is not a JSON object, using defaults", path=str(self.config_path))
            return AppConfiguration()

        return self._dict_to_config(data)

    def save(self, config: AppConfiguration) -> None:
        """Validate and atomically write the configuration.

        Raises:
            ValidationError: If a value is out of range
            ConfigError: If the file cannot be written
        """
        with self._lock:
            self._save_unlocked(config)

    def update(self, change: Callable[[AppConfiguration], AppConfiguration]) -> AppConfiguration:
        """Read-modify-write the configuration and return the stored result."""
        with self._lock:
            updated = change(self.load())
            self._save_unlocked(updated)
            return updated

    def update_gui_defaults(self, **changes: Any) -> AppConfiguration:
        return self.update(lambda c: replace(c, gui_defaults=replace(c.gui_defaults, **changes)))

    def record_database_update(self, when: datetime) -> AppConfiguration:
        return self.update(lambda c: replace(c, database_state=DatabaseState(last_update=when)))

    def record_goldberg_check(self, when: datetime, installed_version: str | None = None) -> AppConfiguration:
        """Record an update check, and the newly installed tag when one was installed."""

        def change(config: AppConfiguration) -> AppConfiguration:
            version = installed_version or config.goldberg_state.installed_version
            return replace(
                config,
                goldberg_state=GoldbergState(installed_version=version, last_update_check=when),
            )

        return self.update(change)

    def validate_config(self, config: AppConfiguration) -> ValidationResult:
        """Validate configuration settings."""
        errors = []
        defaults = config.gui_defaults

        if not defaults.account_name.strip():
            errors.append("account_name cannot be empty")

        if not is_valid_steam_id(defaults.steam_id):
            errors.append("steam_id must be an individual Steam64 id")

        if defaults.language not in LANGUAGES:
            errors.append(f"language must be one of: {', '.join(LANGUAGES)}")

        for name in ("goldberg_update_check_hours", "database_update_check_hours"):
            value = getattr(defaults, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < -1:
                errors.append(f"{name} must be -1, 0 or a positive number of hours")

        if defaults.custom_broadcast_ips is not None and not all(
            isinstance(ip, str) and ip.strip() for ip in defaults.custom_broadcast_ips
        ):
            errors.append("custom_broadcast_ips must contain non-empty addresses")

        return ValidationResult(len(errors) == 0, errors)

    def _save_unlocked(self, config: AppConfiguration) -> None:
        validation_result = self.validate_config(config)
        if not validation_result.is_valid:
            raise ValidationError(
                f"Invalid configuration: {', '.join(validation_result.errors)}",
                field="gui_defaults",
                constraints=validation_result.errors,
            )

        try:
            self._filesystem.write_json(self.config_path, self._config_to_dict(config))
        except OSError as e:
            log.error("Failed to save app configuration", path=str(self.config_path), error=str(e))
            raise ConfigError(
                "Failed to save application settings",
                path=str(self.config_path),
                original_error=e,
            ) from e

        log.debug("App configuration saved", path=str(self.config_path))

    @staticmethod
    def _config_to_dict(config: AppConfiguration) -> dict[str, Any]:
        defaults = config.gui_defaults
        return {
            "gui_defaults": {
                "account_name": defaults.account_name,
                "steam_id": defaults.steam_id,
                "language": defaults.language,
                "custom_broadcast_ips": defaults.custom_broadcast_ips,
                "use_experimental": defaults.use_experimental,
                "goldberg_update_check_hours": defaults.goldberg_update_check_hours,
                "database_update_check_hours": defaults.database_update_check_hours,
            },
            "goldberg_state": {
                "installed_version": config.goldberg_state.installed_version,
                "last_update_check": _format_timestamp(config.goldberg_state.last_update_check),
            },
            "database_state": {
                "last_update": _format_timestamp(config.database_state.last_update),
            },
        }

    @staticmethod
    def _dict_to_config(data: dict[str, Any]) -> AppConfiguration:
        """Convert a loaded dictionary, keeping the default for every invalid field."""
        fallback = GuiDefaults()

        raw_defaults = data.get("gui_defaults")
        raw_defaults = raw_defaults if isinstance(raw_defaults, dict) else {}

        account_name = raw_defaults.get("account_name")
        if not isinstance(account_name, str) or not account_name.strip():
            account_name = fallback.account_name

        steam_id = raw_defaults.get("steam_id")
        if isinstance(steam_id, str) and steam_id.isdigit():
            steam_id = int(steam_id)
        if not isinstance(steam_id, int) or not is_valid_steam_id(steam_id):
            steam_id = fallback.steam_id

        language = raw_defaults.get("language")
        if not isinstance(language, str) or language not in LANGUAGES:
            language = fallback.language

        broadcast_ips = raw_defaults.get("custom_broadcast_ips")
        if isinstance(broadcast_ips, list):
            broadcast_ips = [str(ip).strip() for ip in broadcast_ips if str(ip).strip()] or None
        else:
            broadcast_ips = None

        def hours(key: str, default: int) -> int:
            value = raw_defaults.get(key, default)
            if isinstance(value, bool) or not isinstance(value, int) or value < -1:
                return default
            return value

        raw_goldberg = data.get("goldberg_state")
        raw_goldberg = raw_goldberg if isinstance(raw_goldberg, dict) else {}
        installed_version = raw_goldberg.get("installed_version")

        raw_database = data.get("database_state")
        raw_database = raw_database if isinstance(raw_database, dict) else {}

        return AppConfiguration(
            gui_defaults=GuiDefaults(
                account_name=account_name,
                steam_id=steam_id,
                language=language,
                custom_broadcast_ips=broadcast_ips,
                use_experimental=bool(raw_defaults.get("use_experimental", False)),
                goldberg_update_check_hours=hours("goldberg_update_check_hours", fallback.goldberg_update_check_hours),
                database_update_check_hours=hours("database_update_check_hours", fallback.database_update_check_hours),
            ),
            goldberg_state=GoldbergState(
                installed_version=installed_version if isinstance(installed_version, str) and installed_version else None,
                last_update_check=_parse_timestamp(raw_goldberg.get("last_update_check")),
            ),
            database_state=DatabaseState(
                last_update=_parse_timestamp(raw_database.get("last_update")),
            ),
        )
