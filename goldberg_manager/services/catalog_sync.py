"""Catalog sync from the Steam Web API into the local catalog store."""

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import httpx
import structlog

from ..models import AppListPage, AppType, SteamApp, is_update_due, parse_app_list_page
from .app_config import AppConfigService
from .catalog_store import CatalogStore
from .errors import SyncError
from .http_client import HttpClientService
from .status import StatusChannel

log = structlog.stdlib.get_logger()

APP_LIST_URL = "https://api.steampowered.com/IStoreService/GetAppList/v1/"
PAGE_SIZE = 50000


class SyncStatus(Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TypeSyncResult:
    app_type: AppType
    status: SyncStatus
    count: int = 0  # Rows stored after this pass
    error: SyncError | None = None


@dataclass(frozen=True)
class SyncReport:
    results: list[TypeSyncResult] = field(default_factory=list)
    recorded_update: bool = False

    @property
    def succeeded(self) -> bool:
        return all(r.status != SyncStatus.FAILED for r in self.results)

    def result_for(self, app_type: AppType) -> TypeSyncResult | None:
        return next((r for r in self.results if r.app_type == app_type), None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogSyncService:
    """Keeps the catalog store fresh, one app type at a time.

    Each type is fetched page by page and accumulated in memory; the store
    is only touched once the last page arrived, so a failed fetch leaves
    the previous rows for that type in place.
    """

    def __init__(
        self,
        store: CatalogStore,
        http_client: HttpClientService,
        app_config: AppConfigService,
        status: StatusChannel,
        api_key: str | None,
        url: str = APP_LIST_URL,
        page_size: int = PAGE_SIZE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._http = http_client
        self._app_config = app_config
        self._status = status
        self._api_key = api_key
        self._url = url
        self._page_size = page_size
        self._clock = clock
        self._replace_lock = asyncio.Lock()

    async def sync(
        self,
        force: bool = False,
        concurrent: bool = False,
        app_types: Iterable[AppType] = (AppType.GAME, AppType.DLC),
    ) -> SyncReport:
        """Run one sync pass.

        A type is skipped when it already has rows and the configured
        cadence says no check is due; an empty type is always fetched.
        ``database_state.last_update`` is recorded only when every attempted
        type succeeded.

        Raises:
            StorageError: If writing the store fails
        """
        config = self._app_config.load()
        check_hours = config.gui_defaults.database_update_check_hours
        due = force or is_update_due(check_hours, config.database_state.last_update, self._clock())

        results: list[TypeSyncResult] = []
        to_sync: list[AppType] = []
        for app_type in app_types:
            count = await asyncio.to_thread(self._store.count, app_type)
            if count > 0 and not due:
                log.info("Catalog is fresh, skipping", app_type=app_type.value, count=count, check_hours=check_hours)
                results.append(TypeSyncResult(app_type, SyncStatus.SKIPPED, count))
            else:
                to_sync.append(app_type)

        if concurrent:
            attempted = list(await asyncio.gather(*(self._sync_one(t) for t in to_sync)))
        else:
            attempted = [await self._sync_one(t) for t in to_sync]
        results.extend(attempted)

        recorded = False
        if attempted and all(r.status == SyncStatus.SYNCED for r in attempted):
            await asyncio.to_thread(self._app_config.record_database_update, self._clock())
            recorded = True
            self._status.info("Catalog updated.")

        return SyncReport(results=results, recorded_update=recorded)

    async def _sync_one(self, app_type: AppType) -> TypeSyncResult:
        try:
            count = await self.sync_type(app_type)
        except SyncError as e:
            log.warning("Catalog sync failed", app_type=app_type.value, error=e.message, details=e.technical_details)
            self._status.warning(f"Could not update the {app_type.value} catalog: {e.message}")
            existing = await asyncio.to_thread(self._store.count, app_type)
            return TypeSyncResult(app_type, SyncStatus.FAILED, existing, e)
        return TypeSyncResult(app_type, SyncStatus.SYNCED, count)

    async def sync_type(self, app_type: AppType) -> int:
        """Fetch every page for ``app_type`` and replace its rows.

        Returns:
            Number of rows stored

        Raises:
            SyncError: If any page cannot be fetched or parsed
            StorageError: If the store replacement fails
        """
        self._status.info(f"Updating {app_type.value} catalog...")
        apps: dict[int, SteamApp] = {}
        last_app_id = 0

        while True:
            page = await self.fetch_page(app_type, last_app_id)
            for entry in page.apps:
                apps[entry.app_id] = SteamApp.create(
                    app_id=entry.app_id,
                    name=entry.name,
                    app_type=app_type,
                    last_modified=entry.last_modified,
                    price_change_number=entry.price_change_number,
                )

            log.debug(
                "Catalog page received",
                app_type=app_type.value,
                page_apps=len(page.apps),
                total=len(apps),
                have_more_results=page.have_more_results,
            )

            if not page.have_more_results:
                break
            if page.last_app_id <= last_app_id:
                raise SyncError(
                    "Catalog listing did not advance its cursor",
                    app_type=app_type.value,
                    url=self._url,
                    last_app_id=page.last_app_id,
                )
            last_app_id = page.last_app_id

        async with self._replace_lock:
            stored = await asyncio.to_thread(self._store.replace_by_type, app_type, list(apps.values()))

        log.info("Catalog type synced", app_type=app_type.value, count=stored)
        self._status.info(f"{app_type.value.upper()} catalog updated: {stored} entries.")
        return stored

    async def fetch_page(self, app_type: AppType, last_app_id: int = 0) -> AppListPage:
        """Fetch one page of the listing, starting after ``last_app_id``.

        Raises:
            SyncError: On network failure, invalid JSON or an unknown response shape
        """
        if not self._api_key:
            raise SyncError(
                "No Steam Web API key configured",
                app_type=app_type.value,
                url=self._url,
            )

        params: dict[str, str | int] = {
            "key": self._api_key,
            "max_results": self._page_size,
            "include_games": 1 if app_type == AppType.GAME else 0,
            "include_dlc": 1 if app_type == AppType.DLC else 0,
        }
        if last_app_id > 0:
            params["last_appid"] = last_app_id

        try:
            payload = await self._http.get_json(self._url, params=params)
        except httpx.HTTPError as e:
            raise SyncError(
                "Failed to fetch the catalog listing",
                app_type=app_type.value,
                url=self._url,
                last_app_id=last_app_id,
                original_error=e,
            ) from e
        except ValueError as e:
            raise SyncError(
                "Catalog listing is not valid JSON",
                app_type=app_type.value,
                url=self._url,
                last_app_id=last_app_id,
                original_error=e,
            ) from e

        try:
            return parse_app_list_page(payload)
        except ValueError as e:
            raise SyncError(
                "Unexpected catalog listing format",
                app_type=app_type.value,
                url=self._url,
                last_app_id=last_app_id,
                original_error=e,
            ) from e
