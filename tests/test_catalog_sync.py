"""Tests for catalog sync against a mocked Steam Web API."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from goldberg_manager.models import AppType, SteamApp
from goldberg_manager.services.app_config import AppConfigService
from goldberg_manager.services.catalog_store import CatalogStore
from goldberg_manager.services.catalog_sync import CatalogSyncService, SyncStatus
from goldberg_manager.services.errors import SyncError
from goldberg_manager.services.http_client import HttpClientService
from goldberg_manager.services.status import StatusChannel, StatusLevel

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def listing_handler(pages: dict[str, list[dict]], requests: list[httpx.Request]):
    """Serve ``pages[type]`` one page at a time, two apps per page."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        app_type = "game" if request.url.params["include_games"] == "1" else "dlc"
        apps = pages[app_type]
        after = int(request.url.params.get("last_appid", 0))
        remaining = [a for a in apps if a["appid"] > after]
        page, rest = remaining[:2], remaining[2:]
        body = {"apps": page, "have_more_results": bool(rest)}
        if page:
            body["last_appid"] = page[-1]["appid"]
        return httpx.Response(200, json={"response": body})

    return handler


def make_service(
    tmp_path: Path,
    handler,
    api_key: str | None = "KEY",
) -> tuple[CatalogSyncService, CatalogStore, AppConfigService, StatusChannel]:
    store = CatalogStore(tmp_path / "steamapps.db")
    app_config = AppConfigService(tmp_path / "app_config.json")
    status = StatusChannel()
    http_client = HttpClientService(
        max_retries=0,
        base_delay=0,
        rate_limit_delay=0,
        transport=httpx.MockTransport(handler),
    )
    service = CatalogSyncService(store, http_client, app_config, status, api_key, clock=lambda: NOW)
    return service, store, app_config, status


GAMES = [{"appid": i, "name": f"Game {i}"} for i in (10, 20, 30, 40, 50)]
DLCS = [{"appid": 1000, "name": "Soundtrack"}]


@pytest.mark.asyncio
async def test_full_sync_paginates_and_records_update(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []
    service, store, app_config, _ = make_service(tmp_path, listing_handler({"game": GAMES, "dlc": DLCS}, requests))

    report = await service.sync()

    assert report.succeeded
    assert report.recorded_update
    assert report.result_for(AppType.GAME).count == 5
    assert report.result_for(AppType.DLC).count == 1
    assert store.count(AppType.GAME) == 5
    assert store.find_by_id(AppType.DLC, 1000).name == "Soundtrack"
    assert app_config.load().database_state.last_update == NOW

    game_requests = [r for r in requests if r.url.params["include_games"] == "1"]
    assert len(game_requests) == 3
    assert "last_appid" not in game_requests[0].url.params
    assert [r.url.params["last_appid"] for r in game_requests[1:]] == ["20", "40"]
    assert all(r.url.params["key"] == "KEY" for r in requests)


@pytest.mark.asyncio
async def test_concurrent_sync(tmp_path: Path) -> None:
    service, store, _, _ = make_service(tmp_path, listing_handler({"game": GAMES, "dlc": DLCS}, []))

    report = await service.sync(concurrent=True)

    assert report.succeeded
    assert store.count() == 6


@pytest.mark.asyncio
async def test_fresh_catalog_is_not_fetched(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []
    service, store, app_config, _ = make_service(tmp_path, listing_handler({"game": GAMES, "dlc": DLCS}, requests))
    store.replace_by_type(AppType.GAME, [SteamApp.create(1, "Old", AppType.GAME)])
    store.replace_by_type(AppType.DLC, [SteamApp.create(2, "Old DLC", AppType.DLC)])
    app_config.record_database_update(NOW - timedelta(hours=1))

    report = await service.sync()

    assert requests == []
    assert all(r.status == SyncStatus.SKIPPED for r in report.results)
    assert not report.recorded_update
    assert store.find_by_id(AppType.GAME, 1).name == "Old"


@pytest.mark.asyncio
async def test_always_cadence_fetches_again(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []
    service, store, app_config, _ = make_service(tmp_path, listing_handler({"game": GAMES, "dlc": DLCS}, requests))
    store.replace_by_type(AppType.GAME, [SteamApp.create(1, "Old", AppType.GAME)])
    app_config.record_database_update(NOW - timedelta(hours=1))
    app_config.update_gui_defaults(database_update_check_hours=0)

    await service.sync()

    assert requests
    assert store.find_by_id(AppType.GAME, 1) is None
    assert store.count(AppType.GAME) == 5


@pytest.mark.asyncio
async def test_empty_type_is_fetched_even_when_never_checking(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []
    service, store, app_config, _ = make_service(tmp_path, listing_handler({"game": GAMES, "dlc": DLCS}, requests))
    app_config.update_gui_defaults(database_update_check_hours=-1)

    report = await service.sync()

    assert report.succeeded
    assert store.count(AppType.GAME) == 5


@pytest.mark.asyncio
async def test_malformed_payload_keeps_previous_rows(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    service, store, app_config, status = make_service(tmp_path, handler)
    store.replace_by_type(AppType.GAME, [SteamApp.create(1, "Old", AppType.GAME)])

    report = await service.sync(force=True)

    result = report.result_for(AppType.GAME)
    assert result.status == SyncStatus.FAILED
    assert isinstance(result.error, SyncError)
    assert result.count == 1
    assert store.find_by_id(AppType.GAME, 1).name == "Old"
    assert not report.recorded_update
    assert app_config.load().database_state.last_update is None
    assert status.history(StatusLevel.WARNING)


@pytest.mark.asyncio
async def test_failure_on_a_later_page_stores_nothing(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "last_appid" in request.url.params:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"response": {
            "apps": [{"appid": 5, "name": "First"}],
            "have_more_results": True,
            "last_appid": 5,
        }})

    service, store, _, _ = make_service(tmp_path, handler)

    with pytest.raises(SyncError):
        await service.sync_type(AppType.GAME)

    assert store.count(AppType.GAME) == 0


@pytest.mark.asyncio
async def test_missing_api_key_makes_no_request(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []
    service, _, _, _ = make_service(tmp_path, listing_handler({"game": GAMES, "dlc": DLCS}, requests), api_key=None)

    report = await service.sync()

    assert requests == []
    assert not report.succeeded
    assert all(r.status == SyncStatus.FAILED for r in report.results)


@pytest.mark.asyncio
async def test_cursor_that_does_not_advance_is_an_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=json.dumps({"response": {
            "apps": [{"appid": 5, "name": "Loop"}],
            "have_more_results": True,
            "last_appid": 0,
        }}))

    service, _, _, _ = make_service(tmp_path, handler)

    with pytest.raises(SyncError):
        await service.sync_type(AppType.GAME)
