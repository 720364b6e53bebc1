from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from lumenhub.config import HubConfig
from lumenhub.controllers import MockAdapter
from lumenhub.device_manager import DeviceManager


def make_config(tmp_path: Path, **overrides) -> HubConfig:
    values = dict(
        settings_path=tmp_path / "settings.json",
        wifi_store_path=tmp_path / "wifi.json",
        force_mock=True,
        scan_duration_ms=50,
        adapter_ready_timeout=0.1,
        reconnect_interval=0.05,
        reconnect_initial_delay=0.01,
        reconnect_scan_duration_ms=50,
        auto_reconnect=False,
        restore_state_on_connect=True,
        seed_wifi_demo=False,
    )
    values.update(overrides)
    return HubConfig(**values)


def make_manager(config: HubConfig, adapter: Optional[MockAdapter] = None) -> DeviceManager:
    return DeviceManager(config, adapter=adapter if adapter is not None else MockAdapter())


@pytest.fixture
def hub_config(tmp_path: Path) -> HubConfig:
    return make_config(tmp_path)
