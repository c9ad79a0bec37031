"""Configuration data models."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from .goldberg import (
    DEFAULT_ACCOUNT_NAME,
    DEFAULT_LANGUAGE,
    DEFAULT_STEAM_ID,
    GoldbergGlobalConfiguration,
)

UPDATE_CHECK_DISABLED = -1
UPDATE_CHECK_ALWAYS = 0


@dataclass(frozen=True)
class GuiDefaults:
    """Global defaults and update cadences persisted in ``app_config.json``."""
    account_name: str = DEFAULT_ACCOUNT_NAME
    steam_id: int = DEFAULT_STEAM_ID
    language: str = DEFAULT_LANGUAGE
    custom_broadcast_ips: list[str] | None = None
    use_experimental: bool = False
    goldberg_update_check_hours: int = 24  # -1 = never, 0 = always
    database_update_check_hours: int = 24  # -1 = never, 0 = always

    def to_global_configuration(self) -> GoldbergGlobalConfiguration:
        return GoldbergGlobalConfiguration(
            account_name=self.account_name,
            user_steam_id=self.steam_id,
            language=self.language,
            custom_broadcast_ips=self.custom_broadcast_ips,
            use_experimental=self.use_experimental,
        )


@dataclass(frozen=True)
class GoldbergState:
    """Installed emulator package state."""
    installed_version: str | None = None
    last_update_check: datetime | None = None


@dataclass(frozen=True)
class DatabaseState:
    """Catalog store sync state."""
    last_update: datetime | None = None


@dataclass(frozen=True)
class AppConfiguration:
    """Process-wide persisted state."""
    gui_defaults: GuiDefaults = field(default_factory=GuiDefaults)
    goldberg_state: GoldbergState = field(default_factory=GoldbergState)
    database_state: DatabaseState = field(default_factory=DatabaseState)


@dataclass(frozen=True)
class AppPaths:
    """Locations of the files owned by the manager."""
    base_dir: Path

    @property
    def app_config(self) -> Path:
        return self.base_dir / "app_config.json"

    @property
    def database(self) -> Path:
        return self.base_dir / "steamapps.db"

    @property
    def goldberg_archive(self) -> Path:
        return self.base_dir / "goldberg.7z"

    @property
    def goldberg_dir(self) -> Path:
        return self.base_dir / "goldberg"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"


def is_update_due(check_hours: int, last_check: datetime | None, now: datetime) -> bool:
    """Decide whether an update check is due under an ``N``-hours cadence.

    ``-1`` never checks, ``0`` always checks and ``N > 0`` checks at most
    once every ``N`` hours counted from ``last_check``. A missing timestamp
    means no check has ever happened.
    """
    if check_hours <= UPDATE_CHECK_DISABLED:
        return False
    if check_hours == UPDATE_CHECK_ALWAYS or last_check is None:
        return True
    return now - last_check >= timedelta(hours=check_hours)
