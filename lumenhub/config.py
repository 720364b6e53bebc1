from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


SETTINGS_FILE = Path(os.getenv("LUMENHUB_SETTINGS_STORE", "state/device-settings.json"))
WIFI_STORE_FILE = Path(os.getenv("LUMENHUB_WIFI_STORE", "state/wifi-devices.json"))
FORCE_MOCK = _env_flag("LUMENHUB_MOCK_BLE", "0")
SCAN_DURATION_MS = int(os.getenv("LUMENHUB_SCAN_DURATION_MS", "10000"))
ADAPTER_READY_TIMEOUT = float(os.getenv("LUMENHUB_ADAPTER_READY_TIMEOUT", "5"))
RECONNECT_INTERVAL = float(os.getenv("LUMENHUB_RECONNECT_INTERVAL", "30"))
RECONNECT_INITIAL_DELAY = float(os.getenv("LUMENHUB_RECONNECT_INITIAL_DELAY", "2"))
RECONNECT_SCAN_MS = int(os.getenv("LUMENHUB_RECONNECT_SCAN_MS", "15000"))
AUTO_RECONNECT = _env_flag("LUMENHUB_AUTO_RECONNECT", "1")
RESTORE_STATE = _env_flag("LUMENHUB_RESTORE_STATE", "1")
COMMAND_LOG_SIZE = int(os.getenv("LUMENHUB_COMMAND_LOG_SIZE", "500"))
EVENT_QUEUE_SIZE = int(os.getenv("LUMENHUB_EVENT_QUEUE_SIZE", "100"))
WIFI_DEMO = _env_flag("LUMENHUB_WIFI_DEMO", "1")

HOST = os.getenv("LUMENHUB_HOST", "0.0.0.0")
PORT = int(os.getenv("LUMENHUB_PORT", "8000"))
LOG_LEVEL = os.getenv("LUMENHUB_LOG_LEVEL", "INFO")


@dataclass
class HubConfig:
    """Runtime knobs for one hub instance.

    Defaults come from the ``LUMENHUB_*`` environment variables read at import.
    Tests build instances directly with short timings and temporary paths.
    """

    settings_path: Path = SETTINGS_FILE
    wifi_store_path: Path = WIFI_STORE_FILE
    force_mock: bool = FORCE_MOCK
    scan_duration_ms: int = SCAN_DURATION_MS
    adapter_ready_timeout: float = ADAPTER_READY_TIMEOUT
    reconnect_interval: float = RECONNECT_INTERVAL
    reconnect_initial_delay: float = RECONNECT_INITIAL_DELAY
    reconnect_scan_duration_ms: int = RECONNECT_SCAN_MS
    auto_reconnect: bool = AUTO_RECONNECT
    restore_state_on_connect: bool = RESTORE_STATE
    command_log_size: int = COMMAND_LOG_SIZE
    event_queue_size: int = EVENT_QUEUE_SIZE
    seed_wifi_demo: bool = WIFI_DEMO
