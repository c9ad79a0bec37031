"""Remote metadata: achievement/stat schemas, DLC lists and achievement icons.

Every fetcher here degrades instead of failing: network or format problems
are logged and produce empty or partial results.
"""

import asyncio
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog
from bs4 import BeautifulSoup

from ..models import Achievement, AppType, DlcApp, SteamApp, Stat
from .catalog_store import CatalogStore
from .errors import DownloadError
from .http_client import HttpClientService

log = structlog.stdlib.get_logger()

SCHEMA_URL = "https://api.steampowered.com/ISteamUserStats/GetSchemaForGame/v2/"
APP_DETAILS_URL = "https://store.steampowered.com/api/appdetails"
STORE_DLC_URL = "https://store.steampowered.com/dlc/{app_id}/ajaxgetdlclist"
STEAMDB_DLC_URL = "https://steamdb.info/app/{app_id}/dlc/"

IMAGES_PREFIX = "images/"


def _parse_app_id(value: Any) -> int | None:
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def merge_dlc(dlc_list: list[DlcApp], found: list[DlcApp]) -> list[DlcApp]:
    """Merge enrichment results into ``dlc_list``.

    A placeholder is replaced in place by the resolved entry; ids not yet in
    the list are appended. Resolved entries are never overwritten.
    """
    merged = list(dlc_list)
    positions = {dlc.app_id: i for i, dlc in enumerate(merged)}
    for dlc in found:
        index = positions.get(dlc.app_id)
        if index is None:
            positions[dlc.app_id] = len(merged)
            merged.append(dlc)
        elif merged[index].is_placeholder and not dlc.is_placeholder:
            merged[index] = dlc
    return merged


def parse_store_dlc_list(payload: Any) -> list[DlcApp]:
    """Parse the store's ``ajaxgetdlclist`` response.

    Raises:
        ValueError: If the payload does not carry a DLC list
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    dlcs = data.get("dlcs") if isinstance(data, dict) else None
    if not isinstance(dlcs, list):
        raise ValueError("response has no data.dlcs list")

    found = []
    for entry in dlcs:
        if not isinstance(entry, dict):
            continue
        app_id = _parse_app_id(entry.get("id"))
        if app_id is None:
            continue
        name = entry.get("name")
        found.append(DlcApp.named(app_id, str(name)) if name else DlcApp.unknown(app_id))
    return found


def parse_steamdb_dlc_page(html: str) -> list[DlcApp] | None:
    """Parse the DLC table of a SteamDB app page. Returns None without a DLC section."""
    soup = BeautifulSoup(html, "html.parser")
    section = soup.select_one("#dlc")
    if section is None:
        return None

    found = []
    for element in section.select(".app"):
        app_id = _parse_app_id(element.get("data-appid"))
        if app_id is None:
            continue
        cells = element.find_all("td")
        name = cells[1].get_text(strip=True) if len(cells) > 1 else ""
        found.append(DlcApp.named(app_id, name) if name else DlcApp.unknown(app_id))
    return found


class MetadataService:
    """Fetches per-game metadata from the Steam Web API, the Steam store and SteamDB."""

    def __init__(
        self,
        http_client: HttpClientService,
        store: CatalogStore,
        api_key: str | None,
    ) -> None:
        self._http = http_client
        self._store = store
        self._api_key = api_key

    async def _get_schema(self, app: SteamApp) -> dict[str, Any]:
        if not self._api_key:
            log.warning("No Steam Web API key configured, skipping schema", app_id=app.app_id)
            return {}

        try:
            payload = await self._http.get_json(
                SCHEMA_URL,
                params={"key": self._api_key, "appid": app.app_id, "l": "en"},
            )
        except (httpx.HTTPError, ValueError) as e:
            log.error("Failed to get game schema", app_id=app.app_id, error=str(e))
            return {}

        game = payload.get("game") if isinstance(payload, dict) else None
        stats = game.get("availableGameStats") if isinstance(game, dict) else None
        return stats if isinstance(stats, dict) else {}

    async def get_schema_metadata(self, app: SteamApp) -> tuple[list[Achievement], list[Stat]]:
        """Achievements and stats of a game from a single schema request."""
        schema = await self._get_schema(app)
        return self._achievements_from(app, schema), self._stats_from(app, schema)

    async def get_achievements(self, app: SteamApp) -> list[Achievement]:
        return self._achievements_from(app, await self._get_schema(app))

    async def get_stats(self, app: SteamApp) -> list[Stat]:
        return self._stats_from(app, await self._get_schema(app))

    @staticmethod
    def _achievements_from(app: SteamApp, schema: dict[str, Any]) -> list[Achievement]:
        achievements = []
        for entry in schema.get("achievements") or []:
            if isinstance(entry, dict) and entry.get("name"):
                achievements.append(Achievement.from_dict(entry))
        log.info("Got achievements", app_id=app.app_id, count=len(achievements))
        return achievements

    @staticmethod
    def _stats_from(app: SteamApp, schema: dict[str, Any]) -> list[Stat]:
        stats = []
        for entry in schema.get("stats") or []:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            value = entry.get("defaultvalue", 0)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                value = 0
            stats.append(Stat.from_schema_default(str(entry["name"]), value))
        log.info("Got stats", app_id=app.app_id, count=len(stats))
        return stats

    async def get_dlc(self, app: SteamApp, use_fallbacks: bool = True) -> list[DlcApp]:
        """List the DLC of a game.

        Ids come from the store's app details and are resolved against the
        catalog; unknown ids become placeholders. With ``use_fallbacks`` the
        list is then enriched from the store DLC endpoint, or SteamDB when
        that fails.
        """
        dlc_list: list[DlcApp] = []
        try:
            payload = await self._http.get_json(APP_DETAILS_URL, params={"appids": app.app_id})
            details = payload.get(str(app.app_id), {}) if isinstance(payload, dict) else {}
            data = details.get("data") if isinstance(details, dict) and details.get("success") else None
            if not isinstance(data, dict):
                log.warning("No app details returned", app_id=app.app_id)
            elif data.get("type") != "game":
                log.error("Could not get DLC: app is not a game", app_id=app.app_id, type=data.get("type"))
                return []
            else:
                for raw_id in data.get("dlc") or []:
                    dlc_id = _parse_app_id(raw_id)
                    if dlc_id is None:
                        continue
                    known = await asyncio.to_thread(self._store.find_by_id, AppType.DLC, dlc_id)
                    dlc_list.append(DlcApp.from_steam_app(known) if known else DlcApp.unknown(dlc_id))
        except (httpx.HTTPError, ValueError) as e:
            log.error("Failed to get app details", app_id=app.app_id, error=str(e))

        if use_fallbacks:
            dlc_list = await self._enrich(app, dlc_list)

        log.info("Got DLC", app_id=app.app_id, count=len(dlc_list))
        return dlc_list

    async def _enrich(self, app: SteamApp, dlc_list: list[DlcApp]) -> list[DlcApp]:
        try:
            payload = await self._http.get_json(STORE_DLC_URL.format(app_id=app.app_id))
            found = parse_store_dlc_list(payload)
            log.info("Got DLC from the store", app_id=app.app_id, count=len(found))
            return merge_dlc(dlc_list, found)
        except (httpx.HTTPError, ValueError) as e:
            log.warning("Could not get DLC from the store, falling back to SteamDB", app_id=app.app_id, error=str(e))

        try:
            response = await self._http.get(STEAMDB_DLC_URL.format(app_id=app.app_id))
            found = parse_steamdb_dlc_page(response.text)
        except httpx.HTTPError as e:
            log.error("Could not get DLC from SteamDB, skipping", app_id=app.app_id, error=str(e))
            return dlc_list

        if found is None:
            log.error("SteamDB page has no DLC section", app_id=app.app_id)
            return dlc_list
        log.info("Got DLC from SteamDB", app_id=app.app_id, count=len(found))
        return merge_dlc(dlc_list, found)

    async def download_achievement_images(
        self,
        achievements: list[Achievement],
        images_dir: Path,
    ) -> list[Achievement]:
        """Download achievement icons into ``images_dir``.

        Files that already exist are not downloaded again. A successful or
        existing download rewrites the icon to ``images/<file>``; a failed
        one keeps the original URL.
        """
        cache: dict[str, str] = {}
        updated = []
        for achievement in achievements:
            icon = await self._download_icon(achievement.icon, images_dir, cache)
            icon_gray = await self._download_icon(achievement.icon_gray, images_dir, cache)
            updated.append(Achievement(
                name=achievement.name,
                display_name=achievement.display_name,
                description=achievement.description,
                hidden=achievement.hidden,
                icon=icon,
                icon_gray=icon_gray,
            ))
        return updated

    async def _download_icon(self, icon: str, images_dir: Path, cache: dict[str, str]) -> str:
        if not icon:
            return icon
        if icon in cache:
            return cache[icon]

        file_name = PurePosixPath(urlsplit(icon).path).name
        if not file_name:
            return icon
        target = images_dir / file_name
        local = f"{IMAGES_PREFIX}{file_name}"

        if target.exists():
            cache[icon] = local
            return local

        if icon.startswith(IMAGES_PREFIX) or not urlsplit(icon).scheme:
            log.warning("Previously downloaded image is missing", icon=icon)
            return icon

        try:
            await self._http.download_file(icon, target)
        except (httpx.HTTPError, DownloadError, OSError) as e:
            log.warning("Failed to download achievement icon, keeping URL", url=icon, error=str(e))
            cache[icon] = icon
            return icon

        cache[icon] = local
        return local
