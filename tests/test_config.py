"""Settings parsing from the process environment."""

from __future__ import annotations

from pathlib import Path

import pytest

from parcel_reconciler.config import DEFAULT_CATALOG_PATH, Settings
from parcel_reconciler.exceptions import ConfigurationError
from parcel_reconciler.folders import DEFAULT_PARCELS_ROOT


def test_defaults():
    settings = Settings.from_env()
    assert settings.openai_api_key is None
    assert settings.extraction_model == "gpt-5"
    assert settings.item_delay == 0.8
    assert settings.create_missing is True
    assert settings.extraction_retries == 0
    assert settings.catalog_path == DEFAULT_CATALOG_PATH
    assert settings.folders_root == DEFAULT_PARCELS_ROOT
    assert settings.remote_enabled is False


def test_reads_every_variable(tmp_path, monkeypatch):
    for name, value in {
        "OPENAI_API_KEY": "sk-test",
        "PARCEL_EXTRACTION_MODEL": "gpt-4o",
        "PARCEL_EXTRACTION_TIMEOUT": "30",
        "PARCEL_CATALOG_PATH": str(tmp_path / "c.json"),
        "PARCEL_FOLDERS_ROOT": str(tmp_path / "Parcels"),
        "PARCEL_REMOTE_URL": "https://remote.test",
        "PARCEL_REMOTE_USER": "user-1",
        "PARCEL_REMOTE_TOKEN": "tok",
        "PARCEL_ITEM_DELAY": "2.5",
        "PARCEL_CREATE_MISSING": "no",
        "PARCEL_EXTRACTION_RETRIES": "2",
    }.items():
        monkeypatch.setenv(name, value)

    settings = Settings.from_env()

    assert settings.openai_api_key == "sk-test"
    assert settings.extraction_model == "gpt-4o"
    assert settings.extraction_timeout == 30.0
    assert settings.catalog_path == tmp_path / "c.json"
    assert settings.folders_root == tmp_path / "Parcels"
    assert settings.remote_enabled is True
    assert settings.remote_token == "tok"
    assert settings.item_delay == 2.5
    assert settings.create_missing is False
    assert settings.extraction_retries == 2


def test_empty_variable_keeps_default(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("PARCEL_ITEM_DELAY", "")
    settings = Settings.from_env()
    assert settings.openai_api_key is None
    assert settings.item_delay == 0.8


def test_fields_can_be_passed_by_name(tmp_path):
    settings = Settings(catalog_path=tmp_path / "c.json", item_delay=0, openai_api_key="sk")
    assert settings.catalog_path == tmp_path / "c.json"
    assert settings.item_delay == 0
    assert settings.openai_api_key == "sk"


def test_remote_needs_url_and_user(monkeypatch):
    monkeypatch.setenv("PARCEL_REMOTE_URL", "https://remote.test")
    assert Settings.from_env().remote_enabled is False


def test_home_is_expanded(monkeypatch):
    monkeypatch.setenv("PARCEL_FOLDERS_ROOT", "~/Parcels")
    settings = Settings.from_env()
    assert settings.folders_root == Path.home() / "Parcels"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("PARCEL_ITEM_DELAY", "soon"),
        ("PARCEL_ITEM_DELAY", "-1"),
        ("PARCEL_EXTRACTION_RETRIES", "1.5"),
        ("PARCEL_EXTRACTION_TIMEOUT", "0"),
        ("PARCEL_CREATE_MISSING", "maybe"),
    ],
)
def test_invalid_values_raise(name, value, monkeypatch):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigurationError) as exc_info:
        Settings.from_env()
    assert exc_info.value.details["variable"] == name
    assert name in str(exc_info.value)
