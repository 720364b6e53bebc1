from __future__ import annotations

import json
from pathlib import Path

import pytest

from lumenhub.settings_store import STATE_VERSION, DeviceSettingsStore


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    store = DeviceSettingsStore(tmp_path / "settings.json")
    store.load()
    assert list(store.items()) == []
    assert store.writes == 0
    assert not (tmp_path / "settings.json").exists()


def test_settings_survive_reload(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    store = DeviceSettingsStore(path)
    store.update("aa:bb", saved=True, custom_name="Desk", profile_id="ilink")
    store.update_last_state("aa:bb", {"power": True, "brightness": 40})

    data = json.loads(path.read_text())
    assert data["version"] == STATE_VERSION
    assert data["devices"]["aa:bb"] == {
        "saved": True,
        "customName": "Desk",
        "profileId": "ilink",
        "lastState": {"power": True, "brightness": 40},
    }

    reloaded = DeviceSettingsStore(path)
    reloaded.load()
    setting = reloaded.get("aa:bb")
    assert setting is not None
    assert setting.saved is True
    assert setting.custom_name == "Desk"
    assert setting.last_state == {"power": True, "brightness": 40}


def test_unchanged_last_state_is_not_written(tmp_path: Path) -> None:
    store = DeviceSettingsStore(tmp_path / "settings.json")
    assert store.update_last_state("aa:bb", {"brightness": 50}) is True
    assert store.writes == 1
    assert store.update_last_state("aa:bb", {"brightness": 50}) is False
    assert store.writes == 1
    assert store.update_last_state("aa:bb", {"brightness": 50, "power": True}) is True
    assert store.writes == 2
    assert store.get("aa:bb").last_state == {"brightness": 50, "power": True}


def test_unchanged_update_is_not_written(tmp_path: Path) -> None:
    store = DeviceSettingsStore(tmp_path / "settings.json")
    store.update("aa:bb", custom_name="Lamp")
    store.update("aa:bb", custom_name="Lamp")
    assert store.writes == 1


def test_toggle_twice_restores_saved(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = DeviceSettingsStore(path)
    store.update("aa:bb", custom_name="Lamp")
    before = json.loads(path.read_text())["devices"]

    assert store.toggle_saved("aa:bb") is True
    assert store.toggle_saved("aa:bb") is False
    assert json.loads(path.read_text())["devices"] == before


def test_corrupt_file_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    store = DeviceSettingsStore(path)
    store.load()
    assert list(store.items()) == []

    store.update("aa:bb", saved=True)
    assert json.loads(path.read_text())["devices"]["aa:bb"] == {"saved": True}


def test_wrong_version_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"version": 99, "devices": {"aa:bb": {"saved": True}}}))
    store = DeviceSettingsStore(path)
    store.load()
    assert store.get("aa:bb") is None


def test_unknown_field_is_rejected(tmp_path: Path) -> None:
    store = DeviceSettingsStore(tmp_path / "settings.json")
    with pytest.raises(ValueError):
        store.update("aa:bb", colour="red")


def test_persist_failure_is_swallowed(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    store = DeviceSettingsStore(blocker / "settings.json")
    store.update("aa:bb", saved=True)
    assert store.get("aa:bb").saved is True
    assert store.writes == 0
