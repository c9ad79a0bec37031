"""Steam catalog data models."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

_NON_ALPHANUMERIC = re.compile(r"[^0-9a-zA-Z]+")

UNKNOWN_DLC_PREFIX = "Unknown DLC"


def comparable_name(name: str) -> str:
    """Normalize a display name for equality lookup.

    Strips every non-alphanumeric character and lowercases the rest, so
    ``"Half-Life 2"`` and ``"half life 2"`` both become ``"halflife2"``.
    """
    return _NON_ALPHANUMERIC.sub("", name).lower()


class AppType(Enum):
    """Partition of the catalog."""
    GAME = "game"
    DLC = "dlc"


@dataclass(frozen=True)
class SteamApp:
    """One row of the local Steam catalog."""
    app_id: int
    name: str
    comparable_name: str
    app_type: AppType
    last_modified: int = 0
    price_change_number: int = 0

    @classmethod
    def create(
        cls,
        app_id: int,
        name: str,
        app_type: AppType,
        last_modified: int = 0,
        price_change_number: int = 0,
    ) -> "SteamApp":
        return cls(
            app_id=app_id,
            name=name,
            comparable_name=comparable_name(name),
            app_type=app_type,
            last_modified=last_modified,
            price_change_number=price_change_number,
        )


@dataclass(frozen=True)
class DlcApp(SteamApp):
    """A DLC entry of a game's configuration."""
    app_type: AppType = AppType.DLC
    app_path: str | None = None  # Relative install path, None when unset

    @classmethod
    def from_steam_app(cls, app: SteamApp, app_path: str | None = None) -> "DlcApp":
        return cls(
            app_id=app.app_id,
            name=app.name,
            comparable_name=app.comparable_name,
            app_type=AppType.DLC,
            last_modified=app.last_modified,
            price_change_number=app.price_change_number,
            app_path=app_path,
        )

    @classmethod
    def named(cls, app_id: int, name: str, app_path: str | None = None) -> "DlcApp":
        return cls(
            app_id=app_id,
            name=name,
            comparable_name=comparable_name(name),
            app_path=app_path,
        )

    @classmethod
    def unknown(cls, app_id: int) -> "DlcApp":
        """Placeholder for a DLC id that is missing from the catalog."""
        return cls(
            app_id=app_id,
            name=f"{UNKNOWN_DLC_PREFIX} {app_id}",
            comparable_name=f"unknowndlc{app_id}",
        )

    @property
    def is_placeholder(self) -> bool:
        return UNKNOWN_DLC_PREFIX in self.name


class EnvelopeVariant(Enum):
    """Historical shapes of the catalog listing response."""
    STORE_SERVICE = "response"  # IStoreService/GetAppList/v1
    APP_LIST = "applist"  # ISteamApps/GetAppList/v2


@dataclass(frozen=True)
class CatalogEntry:
    """Raw catalog entry as returned by the listing endpoint."""
    app_id: int
    name: str
    last_modified: int = 0
    price_change_number: int = 0


@dataclass(frozen=True)
class AppListPage:
    """Normalized page of the catalog listing, whatever envelope carried it."""
    variant: EnvelopeVariant
    apps: list[CatalogEntry]
    have_more_results: bool
    last_app_id: int


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return default


def parse_app_list_page(payload: Any) -> AppListPage:
    """Resolve a catalog listing response into an ``AppListPage``.

    Raises:
        ValueError: If the payload matches neither envelope or the app
            list itself is malformed.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")

    for variant in EnvelopeVariant:
        if variant.value in payload:
            body = payload[variant.value]
            break
    else:
        raise ValueError(f"unknown envelope with keys {sorted(payload)}")

    if not isinstance(body, dict):
        raise ValueError(f"'{variant.value}' is not an object")

    # An empty v1 response (no apps left) omits the "apps" key entirely
    raw_apps = body.get("apps", [])
    if not isinstance(raw_apps, list):
        raise ValueError("'apps' is not a list")

    apps: list[CatalogEntry] = []
    for raw in raw_apps:
        if not isinstance(raw, dict) or "appid" not in raw:
            raise ValueError(f"malformed app entry: {raw!r}")
        app_id = _as_int(raw["appid"], default=-1)
        if app_id < 0:
            raise ValueError(f"invalid appid: {raw['appid']!r}")
        apps.append(CatalogEntry(
            app_id=app_id,
            name=str(raw.get("name") or ""),
            last_modified=_as_int(raw.get("last_modified")),
            price_change_number=_as_int(raw.get("price_change_number")),
        ))

    return AppListPage(
        variant=variant,
        apps=apps,
        have_more_results=bool(body.get("have_more_results", False)),
        last_app_id=_as_int(body.get("last_appid")),
    )
