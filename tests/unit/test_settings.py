import pytest

from tablerecord.utils.settings import (
    DEFAULT_KEY_LENGTH,
    RecordSettings,
    echo_sql,
    get_settings,
    key_length,
    load_settings,
    refresh_settings_cache,
    schema_repair_enabled,
)


def test_defaults_without_environment():
    assert load_settings({}) == RecordSettings(
        echo_sql=False,
        schema_repair_enabled=True,
        key_length=DEFAULT_KEY_LENGTH,
    )


@pytest.mark.parametrize(
    "env,expected",
    [
        ({"TABLERECORD_ECHO_SQL": "yes"}, RecordSettings(echo_sql=True)),
        ({"TABLERECORD_SCHEMA_REPAIR_ENABLED": "off"}, RecordSettings(schema_repair_enabled=False)),
        ({"TABLERECORD_SCHEMA_REPAIR_ENABLED": " False "}, RecordSettings(schema_repair_enabled=False)),
        ({"TABLERECORD_KEY_LENGTH": "24"}, RecordSettings(key_length=24)),
    ],
)
def test_load_settings_from_mapping(env, expected):
    assert load_settings(env) == expected


@pytest.mark.parametrize("raw_value", ["maybe", "junk", "2"])
def test_unrecognised_flag_keeps_default(raw_value):
    settings = load_settings({"TABLERECORD_SCHEMA_REPAIR_ENABLED": raw_value})
    assert settings.schema_repair_enabled is True


@pytest.mark.parametrize("raw_value", ["", "zero", "-3", "0"])
def test_invalid_key_length_keeps_default(raw_value):
    assert load_settings({"TABLERECORD_KEY_LENGTH": raw_value}).key_length == DEFAULT_KEY_LENGTH


def test_accessors_read_process_environment(monkeypatch):
    monkeypatch.setenv("TABLERECORD_ECHO_SQL", "1")
    monkeypatch.setenv("TABLERECORD_SCHEMA_REPAIR_ENABLED", "no")
    monkeypatch.setenv("TABLERECORD_KEY_LENGTH", "12")
    refresh_settings_cache()

    assert echo_sql() is True
    assert schema_repair_enabled() is False
    assert key_length() == 12


def test_settings_are_cached_until_refreshed(monkeypatch):
    assert get_settings().echo_sql is False
    monkeypatch.setenv("TABLERECORD_ECHO_SQL", "true")
    assert get_settings().echo_sql is False
    refresh_settings_cache()
    assert get_settings().echo_sql is True
