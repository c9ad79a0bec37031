"""Goldberg emulator configuration models."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .steam_app import DlcApp

DEFAULT_ACCOUNT_NAME = "Mr_Goldberg"
DEFAULT_STEAM_ID = 76561197960287930
DEFAULT_LANGUAGE = "english"

MIN_STEAM_ID = 76561197960265729
MAX_STEAM_ID = 76561202255233023

STAT_TYPES = ("int", "float", "avgrate")

# Languages accepted by the emulator's language setting
LANGUAGES = (
    "english",
    "arabic",
    "bulgarian",
    "schinese",
    "tchinese",
    "czech",
    "danish",
    "dutch",
    "finnish",
    "french",
    "german",
    "greek",
    "hungarian",
    "italian",
    "japanese",
    "koreana",
    "norwegian",
    "polish",
    "portuguese",
    "brazilian",
    "romanian",
    "russian",
    "spanish",
    "swedish",
    "thai",
    "turkish",
    "ukrainian",
)


def is_valid_steam_id(steam_id: int | None) -> bool:
    """Check that a Steam64 id lies in the individual-account range."""
    return steam_id is not None and MIN_STEAM_ID <= steam_id <= MAX_STEAM_ID


@dataclass(frozen=True)
class Achievement:
    """Achievement as stored in ``achievements.json``."""
    name: str
    display_name: str
    description: str = ""
    hidden: int = 0  # 0 = visible, anything else = hidden
    icon: str = ""
    icon_gray: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "hidden": self.hidden,
            "icon": self.icon,
            "icongray": self.icon_gray,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Achievement":
        try:
            hidden = int(data.get("hidden", 0))
        except (TypeError, ValueError):
            hidden = 0
        return cls(
            name=str(data["name"]),
            display_name=str(data.get("displayName") or ""),
            description=str(data.get("description") or ""),
            hidden=hidden,
            icon=str(data.get("icon") or ""),
            icon_gray=str(data.get("icongray") or ""),
        )


@dataclass(frozen=True)
class Stat:
    """Stat as stored in ``stats.json``."""
    name: str
    type: str  # One of STAT_TYPES
    default: str
    global_value: str = "0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "default": self.default,
            "global": self.global_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Stat":
        stat_type = str(data.get("type") or "int")
        return cls(
            name=str(data["name"]),
            type=stat_type if stat_type in STAT_TYPES else "int",
            default=str(data.get("default", "0")),
            global_value=str(data.get("global", "0")),
        )

    @classmethod
    def from_schema_default(cls, name: str, value: float | int) -> "Stat":
        """Build a stat whose type is inferred from its schema default."""
        if float(value).is_integer():
            return cls(name=name, type="int", default=str(int(value)))
        return cls(name=name, type="float", default=str(float(value)))


@dataclass(frozen=True)
class GoldbergGlobalConfiguration:
    """Account and identity defaults applied to every game."""
    account_name: str = DEFAULT_ACCOUNT_NAME
    user_steam_id: int = DEFAULT_STEAM_ID
    language: str = DEFAULT_LANGUAGE
    custom_broadcast_ips: list[str] | None = None
    use_experimental: bool = False


@dataclass(frozen=True)
class GoldbergConfiguration:
    """Per-game emulator configuration."""
    app_id: int
    dlc_list: list[DlcApp] = field(default_factory=list)
    achievements: list[Achievement] = field(default_factory=list)
    stats: list[Stat] | None = None
    offline: bool = False
    disable_networking: bool = False
    disable_overlay: bool = False
    overwritten_global_configuration: GoldbergGlobalConfiguration | None = None


def unique_dlc(dlc_list: Iterable[DlcApp]) -> list[DlcApp]:
    """Drop duplicate DLC ids, keeping the last entry at the first position."""
    by_id: dict[int, DlcApp] = {}
    for dlc in dlc_list:
        by_id[dlc.app_id] = dlc
    return list(by_id.values())


def unique_by_name(entries: Iterable[Any]) -> list[Any]:
    """Drop achievements or stats sharing an internal name (last wins)."""
    by_name: dict[str, Any] = {}
    for entry in entries:
        by_name[entry.name] = entry
    return list(by_name.values())


def effective_global_configuration(
    defaults: GoldbergGlobalConfiguration,
    override: GoldbergGlobalConfiguration | None,
) -> GoldbergGlobalConfiguration:
    """Merge a per-game override into the global defaults field by field.

    An override field wins when it is set: a non-empty string, a valid
    steam id or a non-None broadcast list. ``use_experimental`` is a
    manager setting and always comes from the defaults.
    """
    if override is None:
        return defaults

    return GoldbergGlobalConfiguration(
        account_name=override.account_name or defaults.account_name,
        user_steam_id=(
            override.user_steam_id
            if is_valid_steam_id(override.user_steam_id)
            else defaults.user_steam_id
        ),
        language=override.language or defaults.language,
        custom_broadcast_ips=(
            override.custom_broadcast_ips
            if override.custom_broadcast_ips is not None
            else defaults.custom_broadcast_ips
        ),
        use_experimental=defaults.use_experimental,
    )
