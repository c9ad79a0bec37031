"""Tests for catalog and configuration models."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from goldberg_manager.models import (
    AppType,
    DlcApp,
    EnvelopeVariant,
    GoldbergGlobalConfiguration,
    Stat,
    comparable_name,
    effective_global_configuration,
    is_update_due,
    is_valid_steam_id,
    parse_app_list_page,
    unique_dlc,
)


@given(st.text(max_size=100))
def test_comparable_name_is_idempotent(name: str) -> None:
    """Normalizing an already normalized name changes nothing."""
    once = comparable_name(name)
    assert comparable_name(once) == once


@given(st.text(max_size=100))
def test_comparable_name_is_lowercase_ascii_alphanumeric(name: str) -> None:
    normalized = comparable_name(name)
    assert all(c in "0123456789abcdefghijklmnopqrstuvwxyz" for c in normalized)


def test_comparable_name_ignores_punctuation_and_case() -> None:
    assert comparable_name("Half-Life 2") == comparable_name("half life 2") == "halflife2"
    assert comparable_name("™ ® ©") == ""


class TestParseAppListPage:
    """Both listing envelopes resolve into the same page shape."""

    def test_store_service_envelope(self) -> None:
        page = parse_app_list_page({
            "response": {
                "apps": [
                    {"appid": 10, "name": "Counter-Strike", "last_modified": 5, "price_change_number": 7},
                    {"appid": 20, "name": "Team Fortress Classic"},
                ],
                "have_more_results": True,
                "last_appid": 20,
            }
        })

        assert page.variant == EnvelopeVariant.STORE_SERVICE
        assert [a.app_id for a in page.apps] == [10, 20]
        assert page.apps[0].last_modified == 5
        assert page.apps[0].price_change_number == 7
        assert page.apps[1].last_modified == 0
        assert page.have_more_results is True
        assert page.last_app_id == 20

    def test_app_list_envelope(self) -> None:
        page = parse_app_list_page({"applist": {"apps": [{"appid": 70, "name": "Half-Life"}]}})

        assert page.variant == EnvelopeVariant.APP_LIST
        assert page.apps[0].name == "Half-Life"
        assert page.have_more_results is False
        assert page.last_app_id == 0

    def test_empty_response_without_apps_key(self) -> None:
        page = parse_app_list_page({"response": {}})
        assert page.apps == []
        assert page.have_more_results is False

    @pytest.mark.parametrize("payload", [
        [],
        {"something": {}},
        {"response": []},
        {"response": {"apps": {"appid": 1}}},
        {"response": {"apps": [{"name": "no id"}]}},
        {"response": {"apps": [{"appid": "abc"}]}},
    ])
    def test_malformed_payload_raises(self, payload: object) -> None:
        with pytest.raises(ValueError):
            parse_app_list_page(payload)


class TestDlcApp:
    def test_unknown_is_placeholder(self) -> None:
        dlc = DlcApp.unknown(1234)
        assert dlc.name == "Unknown DLC 1234"
        assert dlc.comparable_name == "unknowndlc1234"
        assert dlc.app_type == AppType.DLC
        assert dlc.is_placeholder

    def test_named_is_not_placeholder(self) -> None:
        dlc = DlcApp.named(5, "Soundtrack", app_path="dlc/ost")
        assert not dlc.is_placeholder
        assert dlc.app_path == "dlc/ost"

    def test_unique_dlc_last_wins(self) -> None:
        result = unique_dlc([DlcApp.named(1, "old"), DlcApp.named(2, "b"), DlcApp.named(1, "new")])
        assert [(d.app_id, d.name) for d in result] == [(1, "new"), (2, "b")]


class TestEffectiveGlobalConfiguration:
    defaults = GoldbergGlobalConfiguration(
        account_name="Global",
        user_steam_id=76561197960287930,
        language="english",
        custom_broadcast_ips=["10.0.0.255"],
        use_experimental=True,
    )

    def test_no_override_returns_defaults(self) -> None:
        assert effective_global_configuration(self.defaults, None) == self.defaults

    def test_set_fields_win(self) -> None:
        override = GoldbergGlobalConfiguration(
            account_name="Player",
            user_steam_id=76561197960287931,
            language="german",
            custom_broadcast_ips=[],
            use_experimental=False,
        )
        merged = effective_global_configuration(self.defaults, override)

        assert merged.account_name == "Player"
        assert merged.user_steam_id == 76561197960287931
        assert merged.language == "german"
        assert merged.custom_broadcast_ips == []
        assert merged.use_experimental is True

    def test_unset_fields_fall_back(self) -> None:
        override = GoldbergGlobalConfiguration(account_name="", user_steam_id=0, language="", custom_broadcast_ips=None)
        merged = effective_global_configuration(self.defaults, override)
        assert merged == self.defaults


def test_steam_id_range() -> None:
    assert is_valid_steam_id(76561197960287930)
    assert not is_valid_steam_id(0)
    assert not is_valid_steam_id(None)
    assert not is_valid_steam_id(76561202255233024)


def test_stat_type_inferred_from_default() -> None:
    assert Stat.from_schema_default("kills", 0) == Stat("kills", "int", "0")
    assert Stat.from_schema_default("ratio", 2.0) == Stat("ratio", "int", "2")
    assert Stat.from_schema_default("accuracy", 0.5) == Stat("accuracy", "float", "0.5")


class TestUpdateCadence:
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)

    def test_never(self) -> None:
        assert not is_update_due(-1, None, self.now)

    def test_always(self) -> None:
        assert is_update_due(0, self.now, self.now)

    def test_first_check(self) -> None:
        assert is_update_due(24, None, self.now)

    @given(hours=st.integers(min_value=1, max_value=1000), elapsed=st.integers(min_value=0, max_value=2000))
    def test_interval(self, hours: int, elapsed: int) -> None:
        last = self.now - timedelta(hours=elapsed)
        assert is_update_due(hours, last, self.now) == (elapsed >= hours)
