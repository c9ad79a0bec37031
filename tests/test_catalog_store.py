"""Tests for the SQLite catalog store."""

import threading
from pathlib import Path

import pytest

from goldberg_manager.models import AppType, SteamApp
from goldberg_manager.services.catalog_store import CatalogStore
from goldberg_manager.services.errors import StorageError


def game(app_id: int, name: str) -> SteamApp:
    return SteamApp.create(app_id, name, AppType.GAME)


@pytest.fixture
def store(tmp_path: Path) -> CatalogStore:
    return CatalogStore(tmp_path / "steamapps.db", batch_size=2)


def test_replace_and_count(store: CatalogStore) -> None:
    assert store.replace_by_type(AppType.GAME, [game(10, "A"), game(20, "B")]) == 2
    assert store.replace_by_type(AppType.DLC, [SteamApp.create(30, "C", AppType.DLC)]) == 1

    assert store.count(AppType.GAME) == 2
    assert store.count(AppType.DLC) == 1
    assert store.count() == 3


def test_replace_swaps_only_one_type(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(10, "A"), game(20, "B")])
    store.replace_by_type(AppType.DLC, [SteamApp.create(30, "C", AppType.DLC)])

    store.replace_by_type(AppType.GAME, [game(40, "D")])

    assert store.find_by_id(AppType.GAME, 10) is None
    assert store.find_by_id(AppType.GAME, 40) == game(40, "D")
    assert store.count(AppType.DLC) == 1


def test_replace_with_nothing_empties_the_type(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(10, "A")])
    assert store.replace_by_type(AppType.GAME, []) == 0
    assert store.count(AppType.GAME) == 0


def test_same_id_may_exist_in_both_types(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(10, "Game")])
    store.replace_by_type(AppType.DLC, [SteamApp.create(10, "Dlc", AppType.DLC)])

    assert store.find_by_id(AppType.GAME, 10).name == "Game"
    assert store.find_by_id(AppType.DLC, 10).name == "Dlc"


def test_failed_replace_keeps_previous_rows(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(10, "A")])

    with pytest.raises(StorageError):
        store.replace_by_type(AppType.GAME, [game(20, "B"), game(20, "B again")])

    assert store.find_by_id(AppType.GAME, 10) == game(10, "A")
    assert store.count(AppType.GAME) == 1


def test_find_by_comparable_name_prefers_lowest_id(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(300, "Half-Life 2"), game(220, "HALF LIFE 2")])

    found = store.find_by_comparable_name(AppType.GAME, "halflife2")
    assert found is not None
    assert found.app_id == 220
    assert store.find_by_comparable_name(AppType.GAME, "portal") is None


def test_search_matches_all_terms_case_insensitively(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [
        game(70, "Half-Life"),
        game(220, "Half-Life 2"),
        game(400, "Portal"),
        game(500, "Life is Strange: half edition"),
        game(600, "Halfway"),
    ])

    results = list(store.search_by_name_terms(AppType.GAME, ["half", "LIFE"]))

    assert [a.app_id for a in results] == [70, 220, 500]


def test_search_with_no_terms_returns_whole_type(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(2, "B"), game(1, "A"), game(3, "C")])
    store.replace_by_type(AppType.DLC, [SteamApp.create(4, "D", AppType.DLC)])

    assert [a.app_id for a in store.search_by_name_terms(AppType.GAME, [])] == [1, 2, 3]


def test_search_stops_when_cancelled(store: CatalogStore) -> None:
    store.replace_by_type(AppType.GAME, [game(i, f"Game {i}") for i in range(1, 11)])
    cancel = threading.Event()

    seen = []
    for app in store.search_by_name_terms(AppType.GAME, ["game"], cancel):
        seen.append(app.app_id)
        if len(seen) == 3:
            cancel.set()

    assert seen == [1, 2, 3]


def test_empty_database_is_created_lazily(tmp_path: Path) -> None:
    store = CatalogStore(tmp_path / "nested" / "steamapps.db")
    assert not store.exists()
    assert store.count() == 0
    assert store.exists()


def test_concurrent_reader_sees_old_or_new_count(tmp_path: Path) -> None:
    writer = CatalogStore(tmp_path / "steamapps.db")
    reader = CatalogStore(tmp_path / "steamapps.db")
    small = [game(i, f"Game {i}") for i in range(1, 2001)]
    large = [game(i, f"Game {i}") for i in range(1, 5001)]
    writer.replace_by_type(AppType.GAME, small)

    seen: set[int] = set()
    done = threading.Event()

    def read_counts() -> None:
        seen.add(reader.count(AppType.GAME))
        while not done.is_set():
            seen.add(reader.count(AppType.GAME))

    thread = threading.Thread(target=read_counts)
    thread.start()
    try:
        for i in range(10):
            writer.replace_by_type(AppType.GAME, large if i % 2 == 0 else small)
    finally:
        done.set()
        thread.join()

    assert seen <= {2000, 5000}
    assert seen
