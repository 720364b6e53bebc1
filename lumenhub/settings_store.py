from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from .models import DeviceSetting

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class DeviceSettingsStore:
    """Durable per-device settings kept in a versioned JSON file.

    Every mutation goes through change detection: a call that would not alter
    the stored record leaves the file untouched. Persistence failures are
    logged and never raised to callers.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._settings: Dict[str, DeviceSetting] = {}
        self._lock = threading.Lock()
        self.writes = 0

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        self._settings = {}
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
            version = data.get("version", 0)
            devices = data.get("devices", {})
            if version != STATE_VERSION or not isinstance(devices, dict):
                raise ValueError("Invalid settings store format")
            for device_id, entry in devices.items():
                if isinstance(entry, dict):
                    self._settings[str(device_id)] = DeviceSetting.from_dict(entry)
        except Exception:
            logger.exception("Failed to load device settings from %s; starting empty", self._path)
            self._settings = {}
        else:
            logger.info("Loaded settings for %d device(s)", len(self._settings))

    def get(self, device_id: str) -> Optional[DeviceSetting]:
        return self._settings.get(device_id)

    def items(self) -> Iterator[Tuple[str, DeviceSetting]]:
        return iter(list(self._settings.items()))

    def update(self, device_id: str, **fields: Any) -> DeviceSetting:
        """Merge ``fields`` into the device's record; persist only on change."""
        unknown = set(fields) - set(DeviceSetting.FIELDS)
        if unknown:
            raise ValueError("Unknown setting(s): %s" % ", ".join(sorted(unknown)))
        current = self._settings.get(device_id)
        setting = current or DeviceSetting()
        changed = current is None and bool(fields)
        for attr, value in fields.items():
            if isinstance(value, dict):
                value = dict(value)
            if getattr(setting, attr) != value:
                setattr(setting, attr, value)
                changed = True
        if changed:
            self._settings[device_id] = setting
            self._persist()
        return setting

    def toggle_saved(self, device_id: str) -> bool:
        current = self._settings.get(device_id)
        saved = not (current.saved if current else False)
        self.update(device_id, saved=saved)
        return saved

    def update_last_state(self, device_id: str, partial: Dict[str, Any]) -> bool:
        """Shallow-merge ``partial`` into ``lastState``. Returns whether it changed."""
        current = self._settings.get(device_id)
        last_state = dict(current.last_state or {}) if current else {}
        changed = False
        for key, value in partial.items():
            if key not in last_state or last_state[key] != value:
                last_state[key] = value
                changed = True
        if not changed:
            return False
        self.update(device_id, last_state=last_state)
        return True

    def _persist(self) -> None:
        payload = {
            "version": STATE_VERSION,
            "devices": {device_id: setting.to_dict() for device_id, setting in self._settings.items()},
            "saved_at": datetime.utcnow().isoformat(),
        }
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self._path.with_name(self._path.name + ".tmp")
                tmp_path.write_text(json.dumps(payload, indent=2))
                os.replace(tmp_path, self._path)
                self.writes += 1
            except Exception:
                logger.exception("Failed to persist device settings to %s", self._path)
