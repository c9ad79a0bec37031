"""Reads and writes a game's emulator configuration directory.

Layout, relative to the game directory::

    steam_appid.txt
    steam_settings/configs.main.ini
    steam_settings/configs.user.ini
    steam_settings/configs.app.ini
    steam_settings/achievements.json
    steam_settings/stats.json
    steam_settings/custom_broadcasts.txt
    steam_settings/images/

Older releases of the emulator used ``DLC.txt``, ``app_paths.txt`` and
presence-only marker files instead of the INI files. Those are still read
when the INI file is missing, and removed on the next write.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, TypeVar

import structlog

from ..models import (
    Achievement,
    DlcApp,
    GoldbergConfiguration,
    GoldbergGlobalConfiguration,
    Stat,
    effective_global_configuration,
    unique_by_name,
    unique_dlc,
)
from .errors import ConfigError
from .filesystem import FileSystemService
from .ini_file import format_bool, format_ini, parse_bool, parse_ini, parse_key_value_lines

log = structlog.stdlib.get_logger()

T = TypeVar("T")

STEAM_SETTINGS = "steam_settings"
APP_ID_FILE = "steam_appid.txt"
MAIN_INI = "configs.main.ini"
USER_INI = "configs.user.ini"
APP_INI = "configs.app.ini"
ACHIEVEMENTS_JSON = "achievements.json"
STATS_JSON = "stats.json"
CUSTOM_BROADCASTS = "custom_broadcasts.txt"
IMAGES_DIR = "images"

LEGACY_DLC = "DLC.txt"
LEGACY_APP_PATHS = "app_paths.txt"
LEGACY_OFFLINE = "offline.txt"
LEGACY_DISABLE_NETWORKING = "disable_networking.txt"
LEGACY_DISABLE_OVERLAY = "disable_overlay.txt"
LEGACY_FILES = (
    LEGACY_DLC,
    LEGACY_APP_PATHS,
    LEGACY_OFFLINE,
    LEGACY_DISABLE_NETWORKING,
    LEGACY_DISABLE_OVERLAY,
)

LISTEN_PORT = 47584
IP_COUNTRY = "US"
UNSET_APP_ID = -1


@dataclass(frozen=True)
class Flags:
    offline: bool = False
    disable_networking: bool = False
    disable_overlay: bool = False


@dataclass(frozen=True)
class FormatStrategy(Generic[T]):
    """One on-disk format of an artifact.

    ``try_read`` returns None when this format is not present, so the next
    strategy in the chain gets a chance.
    """
    name: str
    try_read: Callable[[Path], T | None]


def first_available(strategies: list[FormatStrategy[T]], settings_dir: Path, default: T) -> T:
    for strategy in strategies:
        value = strategy.try_read(settings_dir)
        if value is not None:
            log.debug("Configuration artifact read", format=strategy.name, path=str(settings_dir))
            return value
    return default


def _parse_int(value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _dlc_from_pairs(
    dlc_pairs: list[tuple[str, str]],
    path_pairs: list[tuple[str, str]],
) -> list[DlcApp]:
    paths: dict[int, str] = {}
    for key, value in path_pairs:
        app_id = _parse_int(key)
        if app_id is not None and value:
            paths[app_id] = value

    dlc_list = []
    for key, value in dlc_pairs:
        app_id = _parse_int(key)
        if app_id is None:
            # Includes the legacy unlock_all key, which is not honored
            continue
        dlc_list.append(DlcApp.named(app_id, value, paths.get(app_id)))
    return unique_dlc(dlc_list)


class ConfigCodec:
    """Bidirectional mapping between ``GoldbergConfiguration`` and a game directory."""

    def __init__(self, filesystem: FileSystemService | None = None) -> None:
        self._fs = filesystem or FileSystemService()

        self.flag_formats: list[FormatStrategy[Flags]] = [
            FormatStrategy(MAIN_INI, self._read_main_ini),
            FormatStrategy("marker files", self._read_marker_files),
        ]
        self.dlc_formats: list[FormatStrategy[list[DlcApp]]] = [
            FormatStrategy(APP_INI, self._read_app_ini),
            FormatStrategy(LEGACY_DLC, self._read_legacy_dlc),
        ]
        self.achievement_formats: list[FormatStrategy[list[Achievement]]] = [
            FormatStrategy(ACHIEVEMENTS_JSON, self._read_achievements),
        ]
        self.stat_formats: list[FormatStrategy[list[Stat]]] = [
            FormatStrategy(STATS_JSON, self._read_stats),
        ]
        self.user_formats: list[FormatStrategy[GoldbergGlobalConfiguration]] = [
            FormatStrategy(USER_INI, self._read_user_ini),
        ]

    @staticmethod
    def settings_dir(game_dir: Path) -> Path:
        return game_dir / STEAM_SETTINGS

    def is_applied(self, game_dir: Path) -> bool:
        """A directory counts as configured when both the settings folder and the app id file exist."""
        return self.settings_dir(game_dir).is_dir() and (game_dir / APP_ID_FILE).is_file()

    def read(
        self,
        game_dir: Path,
        global_config: GoldbergGlobalConfiguration | None = None,
    ) -> GoldbergConfiguration:
        """Read the configuration stored in ``game_dir``.

        Missing artifacts fall back to older formats and then to empty
        values. The per-game user settings are only reported as an override
        when they differ from ``global_config``.

        Raises:
            ConfigError: If a file exists but cannot be read
        """
        settings_dir = self.settings_dir(game_dir)
        log.info("Reading configuration", game_dir=str(game_dir))

        with self._io_errors("read", game_dir):
            app_id = self._read_app_id(game_dir)
            flags = first_available(self.flag_formats, settings_dir, Flags())
            dlc_list = first_available(self.dlc_formats, settings_dir, [])
            achievements = first_available(self.achievement_formats, settings_dir, [])
            stats = first_available(self.stat_formats, settings_dir, None)
            user = first_available(self.user_formats, settings_dir, None)

        override = None
        if user is not None:
            if global_config is None:
                override = user
            else:
                merged = effective_global_configuration(global_config, user)
                if self._identity(merged) != self._identity(global_config):
                    override = merged

        return GoldbergConfiguration(
            app_id=app_id,
            dlc_list=dlc_list,
            achievements=achievements,
            stats=stats,
            offline=flags.offline,
            disable_networking=flags.disable_networking,
            disable_overlay=flags.disable_overlay,
            overwritten_global_configuration=override,
        )

    def write(
        self,
        game_dir: Path,
        config: GoldbergConfiguration,
        global_config: GoldbergGlobalConfiguration,
    ) -> None:
        """Write ``config`` into ``game_dir``.

        Every file is replaced atomically. ``steam_appid.txt`` goes last, so
        a directory only looks configured once everything else is in place.

        Raises:
            ConfigError: If a file cannot be written or removed
        """
        settings_dir = self.settings_dir(game_dir)
        effective = effective_global_configuration(global_config, config.overwritten_global_configuration)
        log.info("Writing configuration", game_dir=str(game_dir), app_id=config.app_id)
        if not self._fs.check_write_permission(game_dir):
            raise ConfigError(f"No write permission for {game_dir}", path=str(game_dir))

        with self._io_errors("write", game_dir):
            self._fs.ensure_directory(settings_dir)

            self._fs.write_text(settings_dir / MAIN_INI, format_ini({
                "main::connectivity": {
                    "offline": format_bool(config.offline),
                    "disable_networking": format_bool(config.disable_networking),
                    "listen_port": str(LISTEN_PORT),
                },
                "main::misc": {
                    "disable_overlay": format_bool(config.disable_overlay),
                },
            }))

            self._fs.write_text(settings_dir / USER_INI, format_ini({
                "user::general": {
                    "account_name": effective.account_name,
                    "account_steamid": str(effective.user_steam_id),
                    "language": effective.language,
                    "ip_country": IP_COUNTRY,
                },
            }))

            self._fs.write_text(settings_dir / APP_INI, format_ini(self._app_sections(config.dlc_list)))

            achievements = unique_by_name(config.achievements)
            if achievements:
                self._fs.write_json(settings_dir / ACHIEVEMENTS_JSON, [a.to_dict() for a in achievements])
            else:
                self._fs.remove_file(settings_dir / ACHIEVEMENTS_JSON)
                self._fs.remove_tree(settings_dir / IMAGES_DIR)

            stats = unique_by_name(config.stats or [])
            if stats:
                self._fs.write_json(settings_dir / STATS_JSON, [s.to_dict() for s in stats])
            else:
                self._fs.remove_file(settings_dir / STATS_JSON)

            broadcasts = [ip.strip() for ip in effective.custom_broadcast_ips or [] if ip.strip()]
            if broadcasts:
                self._fs.write_text(settings_dir / CUSTOM_BROADCASTS, "\n".join(broadcasts) + "\n")
            else:
                self._fs.remove_file(settings_dir / CUSTOM_BROADCASTS)

            for legacy in LEGACY_FILES:
                self._fs.remove_file(settings_dir / legacy)

            self._fs.write_text(game_dir / APP_ID_FILE, str(config.app_id))

        log.info(
            "Configuration written",
            game_dir=str(game_dir),
            dlc=len(config.dlc_list),
            achievements=len(achievements),
            stats=len(stats),
        )

    @staticmethod
    def _app_sections(dlc_list: list[DlcApp]) -> dict[str, dict[str, str]]:
        dlcs = unique_dlc(dlc_list)
        sections = {
            "app::general": {
                "is_beta_branch": "0",
                "branch_name": "public",
            },
            "app::dlcs": {str(dlc.app_id): dlc.name for dlc in dlcs},
        }
        paths = {str(dlc.app_id): dlc.app_path for dlc in dlcs if dlc.app_path}
        if paths:
            sections["app::paths"] = paths
        return sections

    @staticmethod
    def _identity(config: GoldbergGlobalConfiguration) -> tuple[Any, ...]:
        return (
            config.account_name,
            config.user_steam_id,
            config.language,
            tuple(config.custom_broadcast_ips or ()),
        )

    @contextmanager
    def _io_errors(self, operation: str, game_dir: Path) -> Iterator[None]:
        try:
            yield
        except OSError as e:
            path = e.filename or game_dir
            log.error("Configuration I/O failed", operation=operation, path=str(path), error=str(e))
            raise ConfigError(
                f"Failed to {operation} configuration in {game_dir}",
                path=str(path),
                original_error=e,
            ) from e

    def _read_app_id(self, game_dir: Path) -> int:
        content = self._fs.read_text(game_dir / APP_ID_FILE)
        lines = content.splitlines() if content else []
        app_id = _parse_int(lines[0]) if lines else None
        if app_id is None:
            log.warning("steam_appid.txt missing or invalid", game_dir=str(game_dir))
            return UNSET_APP_ID
        return app_id

    def _read_main_ini(self, settings_dir: Path) -> Flags | None:
        content = self._fs.read_text(settings_dir / MAIN_INI)
        if content is None:
            return None
        ini = parse_ini(content)
        connectivity = ini.get("main::connectivity", {})
        misc = ini.get("main::misc", {})
        return Flags(
            offline=parse_bool(connectivity.get("offline")) or False,
            disable_networking=parse_bool(connectivity.get("disable_networking")) or False,
            disable_overlay=parse_bool(misc.get("disable_overlay")) or False,
        )

    @staticmethod
    def _read_marker_files(settings_dir: Path) -> Flags:
        return Flags(
            offline=(settings_dir / LEGACY_OFFLINE).exists(),
            disable_networking=(settings_dir / LEGACY_DISABLE_NETWORKING).exists(),
            disable_overlay=(settings_dir / LEGACY_DISABLE_OVERLAY).exists(),
        )

    def _read_app_ini(self, settings_dir: Path) -> list[DlcApp] | None:
        content = self._fs.read_text(settings_dir / APP_INI)
        if content is None:
            return None
        ini = parse_ini(content)
        return _dlc_from_pairs(
            list(ini.get("app::dlcs", {}).items()),
            list(ini.get("app::paths", {}).items()),
        )

    def _read_legacy_dlc(self, settings_dir: Path) -> list[DlcApp] | None:
        content = self._fs.read_text(settings_dir / LEGACY_DLC)
        if content is None:
            return None
        paths = self._fs.read_text(settings_dir / LEGACY_APP_PATHS) or ""
        return _dlc_from_pairs(parse_key_value_lines(content), parse_key_value_lines(paths))

    def _read_json_list(self, path: Path) -> list[dict[str, Any]] | None:
        data = self._fs.read_json(path)
        if data is None:
            return None
        if not isinstance(data, list):
            log.warning("Expected a JSON array, ignoring file", path=str(path))
            return None
        return [entry for entry in data if isinstance(entry, dict) and "name" in entry]

    def _read_achievements(self, settings_dir: Path) -> list[Achievement] | None:
        entries = self._read_json_list(settings_dir / ACHIEVEMENTS_JSON)
        if entries is None:
            return None
        return unique_by_name(Achievement.from_dict(entry) for entry in entries)

    def _read_stats(self, settings_dir: Path) -> list[Stat] | None:
        entries = self._read_json_list(settings_dir / STATS_JSON)
        if entries is None:
            return None
        return unique_by_name(Stat.from_dict(entry) for entry in entries)

    def _read_user_ini(self, settings_dir: Path) -> GoldbergGlobalConfiguration | None:
        content = self._fs.read_text(settings_dir / USER_INI)
        if content is None:
            return None
        general = parse_ini(content).get("user::general", {})

        broadcasts_text = self._fs.read_text(settings_dir / CUSTOM_BROADCASTS)
        broadcasts = None
        if broadcasts_text is not None:
            broadcasts = [line.strip() for line in broadcasts_text.splitlines() if line.strip()] or None

        return GoldbergGlobalConfiguration(
            account_name=general.get("account_name", ""),
            # 0 is outside the valid range, so the merge keeps the default
            user_steam_id=_parse_int(general.get("account_steamid", "")) or 0,
            language=general.get("language", ""),
            custom_broadcast_ips=broadcasts,
        )
