from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path

import pytest

from lumenhub.controllers import MockAdapter, Peripheral
from lumenhub.errors import AdapterNotReady
from lumenhub.models import (
    DEVICE_DISCOVERED,
    SCAN_STARTED,
    SCAN_STOPPED,
    UNKNOWN_NAME,
    ScanKind,
)
from lumenhub.settings_store import DeviceSettingsStore

from conftest import make_config, make_manager


def _types(events) -> Counter:
    return Counter(event.type for event in events)


def test_scan_reports_each_peripheral_once(tmp_path: Path) -> None:
    async def scenario() -> None:
        manager = make_manager(make_config(tmp_path))
        await manager.startup()
        events = manager.events.subscribe()

        devices = await manager.start_scan(50)
        assert devices == []
        await asyncio.sleep(0.2)

        seen = events.drain()
        counts = _types(seen)
        assert counts[SCAN_STARTED] == 1
        assert counts[SCAN_STOPPED] == 1
        discovered = [event.payload["id"] for event in seen if event.type == DEVICE_DISCOVERED]
        assert sorted(discovered) == ["mock-bulb-1", "mock-desk-1", "mock-strip-1"]
        assert not manager.state.scanning
        assert {d["id"] for d in manager.list_devices()} == set(discovered)
        assert all("characteristics" not in d for d in manager.list_devices())
        await manager.shutdown()

    asyncio.run(scenario())


def test_start_while_scanning_is_a_no_op(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        events = manager.events.subscribe()

        await manager.start_scan(100)
        await asyncio.sleep(0.02)
        again = await manager.start_scan(100)
        assert len(again) == 3
        await asyncio.sleep(0.2)

        assert adapter.calls["start_scan"] == 1
        assert _types(events.drain())[SCAN_STARTED] == 1
        await manager.shutdown()

    asyncio.run(scenario())


def test_stop_is_idempotent_and_wins_over_timer(tmp_path: Path) -> None:
    async def scenario() -> None:
        manager = make_manager(make_config(tmp_path))
        await manager.startup()
        events = manager.events.subscribe()

        await manager.start_scan(60)
        await manager.stop_scan()
        await manager.stop_scan()
        await asyncio.sleep(0.15)

        stopped = [event for event in events.drain() if event.type == SCAN_STOPPED]
        assert len(stopped) == 1
        assert "error" not in stopped[0].payload
        await manager.shutdown()

    asyncio.run(scenario())


def test_adapter_not_ready_reports_failed_scan(tmp_path: Path) -> None:
    async def scenario() -> None:
        manager = make_manager(make_config(tmp_path), MockAdapter(ready=False))
        await manager.startup()
        events = manager.events.subscribe()

        with pytest.raises(AdapterNotReady):
            await manager.start_scan(50)

        seen = events.drain()
        assert [event.type for event in seen] == [SCAN_STARTED, SCAN_STOPPED]
        assert "error" in seen[1].payload
        assert not manager.state.scanning
        assert manager.state.adapter_state == "unavailable"
        await manager.shutdown()

    asyncio.run(scenario())


def test_display_names(tmp_path: Path) -> None:
    async def scenario() -> None:
        peripherals = [
            Peripheral("aa:01", None, -60, {"a032"}),
            Peripheral("aa:02", None, -61, set()),
            Peripheral("aa:03", "Named", -62, set()),
        ]
        adapter = MockAdapter(peripherals)
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        await manager.start_scan(30)
        await asyncio.sleep(0.1)

        assert manager.get_device("aa:01").name == "ilink? (Service A032)"
        assert manager.get_device("aa:02").name == UNKNOWN_NAME
        assert manager.get_device("aa:03").name == "Named"

        # rediscovery without a name keeps the known one but refreshes rssi
        adapter.peripherals["aa:03"] = Peripheral("aa:03", None, -40, set())
        await manager.start_scan(30)
        await asyncio.sleep(0.1)
        device = manager.get_device("aa:03")
        assert device.name == "Named"
        assert device.rssi == -40
        await manager.shutdown()

    asyncio.run(scenario())


def test_custom_name_wins(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path)
        DeviceSettingsStore(config.settings_path).update("mock-strip-1", custom_name="Kitchen")
        manager = make_manager(config)
        await manager.startup()
        await manager.start_scan(30)
        await asyncio.sleep(0.1)
        assert manager.get_device("mock-strip-1").name == "Kitchen"
        await manager.shutdown()

    asyncio.run(scenario())


def test_saved_device_connects_when_seen(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path)
        DeviceSettingsStore(config.settings_path).update("mock-desk-1", saved=True)
        adapter = MockAdapter()
        manager = make_manager(config, adapter)
        await manager.startup()
        assert manager.get_device("mock-desk-1").name == "Saved Device"

        await manager.start_scan(200)
        await asyncio.sleep(0.1)

        device = manager.get_device("mock-desk-1")
        assert device.connected
        assert device.name == "Desk Lamp"
        assert adapter.calls["connect"] == 1
        assert not manager.state.scanning
        await manager.shutdown()

    asyncio.run(scenario())


def test_auto_scan_stops_once_saved_devices_are_seen(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path)
        DeviceSettingsStore(config.settings_path).update("mock-bulb-1", saved=True)
        adapter = MockAdapter()
        adapter.fail_connect.add("mock-bulb-1")
        manager = make_manager(config, adapter)
        await manager.startup()
        events = manager.events.subscribe()

        await manager.discovery.start_scan(5000, ScanKind.AUTO)
        await asyncio.sleep(0.1)

        assert not manager.state.scanning
        assert "mock-bulb-1" in manager.state.peripherals
        assert _types(events.drain())[SCAN_STOPPED] == 1
        await manager.shutdown()

    asyncio.run(scenario())


def test_single_peripheral_scan_lifecycle(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter([Peripheral("aa:01", "Lamp", -50, {"ffe0"})])
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        events = manager.events.subscribe()

        await manager.start_scan(500)
        assert manager.state.scanning
        await asyncio.sleep(0.7)

        counts = _types(events.drain())
        assert not manager.state.scanning
        assert counts[DEVICE_DISCOVERED] == 1
        assert counts[SCAN_STARTED] == 1
        assert counts[SCAN_STOPPED] == 1
        assert adapter.calls["stop_scan"] == 1

    asyncio.run(scenario())


class SlowStartAdapter(MockAdapter):
    async def start_scan(self, on_discovered) -> None:
        await asyncio.sleep(0.05)
        await super().start_scan(on_discovered)


def test_stop_during_adapter_start_leaves_radio_idle(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = SlowStartAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        events = manager.events.subscribe()

        starting = asyncio.create_task(manager.start_scan(100))
        await asyncio.sleep(0.01)
        await manager.stop_scan()
        await starting
        await asyncio.sleep(0.2)

        assert not manager.state.scanning
        assert not adapter.scanning
        assert manager.state.scan_task is None
        assert _types(events.drain())[SCAN_STOPPED] == 1

        await manager.start_scan(50)
        assert manager.state.scanning
        await asyncio.sleep(0.2)
        assert not adapter.scanning
        await manager.shutdown()

    asyncio.run(scenario())
