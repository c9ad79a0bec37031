"""Data models for Goldberg Config Manager."""

from .config import (
    AppConfiguration,
    AppPaths,
    DatabaseState,
    GoldbergState,
    GuiDefaults,
    is_update_due,
)
from .goldberg import (
    LANGUAGES,
    Achievement,
    GoldbergConfiguration,
    GoldbergGlobalConfiguration,
    Stat,
    effective_global_configuration,
    is_valid_steam_id,
    unique_by_name,
    unique_dlc,
)
from .steam_app import (
    AppListPage,
    AppType,
    CatalogEntry,
    DlcApp,
    EnvelopeVariant,
    SteamApp,
    comparable_name,
    parse_app_list_page,
)

__all__ = [
    "Achievement",
    "AppConfiguration",
    "AppListPage",
    "AppPaths",
    "AppType",
    "CatalogEntry",
    "DatabaseState",
    "DlcApp",
    "EnvelopeVariant",
    "GoldbergConfiguration",
    "GoldbergGlobalConfiguration",
    "GoldbergState",
    "GuiDefaults",
    "LANGUAGES",
    "Stat",
    "SteamApp",
    "comparable_name",
    "effective_global_configuration",
    "is_update_due",
    "is_valid_steam_id",
    "parse_app_list_page",
    "unique_by_name",
    "unique_dlc",
]
