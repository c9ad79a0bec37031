"""Tests for remote metadata fetchers."""

from pathlib import Path

import httpx
import pytest

from goldberg_manager.models import Achievement, AppType, DlcApp, SteamApp, Stat
from goldberg_manager.services.catalog_store import CatalogStore
from goldberg_manager.services.http_client import HttpClientService
from goldberg_manager.services.metadata import (
    APP_DETAILS_URL,
    SCHEMA_URL,
    MetadataService,
    merge_dlc,
    parse_steamdb_dlc_page,
    parse_store_dlc_list,
)

GAME = SteamApp.create(480, "Spacewar", AppType.GAME)

STEAMDB_HTML = """
<html><body>
<div id="dlc">
  <table>
    <tr class="app" data-appid="1001"><td>1001</td><td>Soundtrack</td></tr>
    <tr class="app" data-appid="1003"><td>1003</td><td> Season Pass </td></tr>
    <tr class="app" data-appid="oops"><td>x</td><td>Broken</td></tr>
    <tr class="app" data-appid="1004"><td>1004</td></tr>
  </table>
</div>
</body></html>
"""


def make_service(tmp_path: Path, handler, api_key: str | None = "KEY") -> tuple[MetadataService, CatalogStore]:
    store = CatalogStore(tmp_path / "steamapps.db")
    http_client = HttpClientService(
        max_retries=0,
        base_delay=0,
        rate_limit_delay=0,
        transport=httpx.MockTransport(handler),
    )
    return MetadataService(http_client, store, api_key), store


class TestParsers:
    def test_merge_replaces_placeholders_and_appends(self) -> None:
        current = [DlcApp.unknown(1), DlcApp.named(2, "Known")]
        found = [DlcApp.named(1, "Resolved"), DlcApp.named(2, "Other name"), DlcApp.named(3, "New")]

        merged = merge_dlc(current, found)

        assert [(d.app_id, d.name) for d in merged] == [(1, "Resolved"), (2, "Known"), (3, "New")]

    def test_merge_keeps_placeholder_when_still_unknown(self) -> None:
        merged = merge_dlc([DlcApp.unknown(1)], [DlcApp.unknown(1)])
        assert merged == [DlcApp.unknown(1)]

    def test_parse_store_dlc_list(self) -> None:
        found = parse_store_dlc_list({"data": {"dlcs": [{"id": "1001", "name": "Soundtrack"}, {"id": 1002}]}})
        assert [(d.app_id, d.name) for d in found] == [(1001, "Soundtrack"), (1002, "Unknown DLC 1002")]

    def test_parse_store_dlc_list_rejects_other_shapes(self) -> None:
        with pytest.raises(ValueError):
            parse_store_dlc_list({"success": 2})

    def test_parse_steamdb_page(self) -> None:
        found = parse_steamdb_dlc_page(STEAMDB_HTML)

        assert [(d.app_id, d.name) for d in found] == [
            (1001, "Soundtrack"),
            (1003, "Season Pass"),
            (1004, "Unknown DLC 1004"),
        ]

    def test_parse_steamdb_page_without_section(self) -> None:
        assert parse_steamdb_dlc_page("<html><body>Rate limited</body></html>") is None


@pytest.mark.asyncio
async def test_achievements_and_stats_from_schema(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url).startswith(SCHEMA_URL)
        assert request.url.params["appid"] == "480"
        return httpx.Response(200, json={"game": {"availableGameStats": {
            "achievements": [
                {"name": "ACH_WIN", "displayName": "Winner", "hidden": 1, "icon": "https://cdn/win.jpg"},
                {"displayName": "no name"},
            ],
            "stats": [
                {"name": "kills", "defaultvalue": 0},
                {"name": "ratio", "defaultvalue": 0.25},
            ],
        }}})

    service, _ = make_service(tmp_path, handler)

    achievements = await service.get_achievements(GAME)
    stats = await service.get_stats(GAME)

    assert achievements == [Achievement("ACH_WIN", "Winner", "", 1, "https://cdn/win.jpg", "")]
    assert stats == [Stat("kills", "int", "0"), Stat("ratio", "float", "0.25")]


@pytest.mark.asyncio
async def test_schema_metadata_uses_one_request(tmp_path: Path) -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"game": {"availableGameStats": {
            "achievements": [{"name": "ACH_WIN", "displayName": "Winner"}],
            "stats": [{"name": "kills", "defaultvalue": 3}],
        }}})

    service, _ = make_service(tmp_path, handler)

    achievements, stats = await service.get_schema_metadata(GAME)

    assert [a.name for a in achievements] == ["ACH_WIN"]
    assert stats == [Stat("kills", "int", "3")]
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_schema_without_key_is_empty(tmp_path: Path) -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(500)

    service, _ = make_service(tmp_path, handler, api_key=None)

    assert await service.get_achievements(GAME) == []
    assert await service.get_stats(GAME) == []
    assert requests == []


@pytest.mark.asyncio
async def test_schema_failure_is_empty(tmp_path: Path) -> None:
    service, _ = make_service(tmp_path, lambda request: httpx.Response(403))
    assert await service.get_achievements(GAME) == []


@pytest.mark.asyncio
async def test_dlc_resolved_from_catalog_and_enriched(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(APP_DETAILS_URL):
            return httpx.Response(200, json={"480": {"success": True, "data": {"type": "game", "dlc": [1001, 1002]}}})
        if "ajaxgetdlclist" in url:
            return httpx.Response(200, json={"data": {"dlcs": [{"id": 1002, "name": "Art Book"}, {"id": 1005, "name": "Skin"}]}})
        return httpx.Response(404)

    service, store = make_service(tmp_path, handler)
    store.replace_by_type(AppType.DLC, [SteamApp.create(1001, "Soundtrack", AppType.DLC)])

    dlc = await service.get_dlc(GAME)

    assert [(d.app_id, d.name) for d in dlc] == [(1001, "Soundtrack"), (1002, "Art Book"), (1005, "Skin")]


@pytest.mark.asyncio
async def test_dlc_falls_back_to_steamdb(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(APP_DETAILS_URL):
            return httpx.Response(200, json={"480": {"success": True, "data": {"type": "game", "dlc": [1001]}}})
        if "steamdb.info" in url:
            return httpx.Response(200, text=STEAMDB_HTML)
        return httpx.Response(500)

    service, _ = make_service(tmp_path, handler)

    dlc = await service.get_dlc(GAME)

    assert [(d.app_id, d.name) for d in dlc] == [
        (1001, "Soundtrack"),
        (1003, "Season Pass"),
        (1004, "Unknown DLC 1004"),
    ]


@pytest.mark.asyncio
async def test_dlc_without_fallbacks_keeps_placeholders(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url).startswith(APP_DETAILS_URL)
        return httpx.Response(200, json={"480": {"success": True, "data": {"type": "game", "dlc": [1001]}}})

    service, _ = make_service(tmp_path, handler)

    assert await service.get_dlc(GAME, use_fallbacks=False) == [DlcApp.unknown(1001)]


@pytest.mark.asyncio
async def test_dlc_of_non_game_is_empty(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"480": {"success": True, "data": {"type": "dlc", "dlc": [1]}}})

    service, _ = make_service(tmp_path, handler)

    assert await service.get_dlc(GAME) == []


@pytest.mark.asyncio
async def test_achievement_images_downloaded_once(tmp_path: Path) -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        if request.url.path.endswith("missing.jpg"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"image")

    service, _ = make_service(tmp_path, handler)
    images = tmp_path / "images"
    images.mkdir()
    (images / "existing.jpg").write_bytes(b"old")
    achievements = [
        Achievement("A", "A", icon="https://cdn/a/new.jpg", icon_gray="https://cdn/a/existing.jpg"),
        Achievement("B", "B", icon="https://cdn/a/new.jpg", icon_gray="https://cdn/a/missing.jpg"),
    ]

    updated = await service.download_achievement_images(achievements, images)

    assert updated[0].icon == "images/new.jpg"
    assert updated[0].icon_gray == "images/existing.jpg"
    assert updated[1].icon == "images/new.jpg"
    assert updated[1].icon_gray == "https://cdn/a/missing.jpg"
    assert requests.count("https://cdn/a/new.jpg") == 1
    assert (images / "new.jpg").read_bytes() == b"image"
    assert (images / "existing.jpg").read_bytes() == b"old"
