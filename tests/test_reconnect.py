from __future__ import annotations

import asyncio
from pathlib import Path

from lumenhub.controllers import MockAdapter
from lumenhub.models import SCAN_STARTED
from lumenhub.settings_store import DeviceSettingsStore

from conftest import make_config, make_manager


def test_nothing_to_do_touches_no_radio(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()

        await manager.reconnect.run_once()

        assert sum(adapter.calls.values()) == 0

    asyncio.run(scenario())


def test_cached_handles_reconnect_without_scanning(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        await manager.start_scan(30)
        await asyncio.sleep(0.1)
        manager.set_settings("mock-desk-1", saved=True)
        adapter.calls.clear()

        await manager.reconnect.run_once()

        assert adapter.calls["start_scan"] == 0
        assert adapter.calls["connect"] == 1
        assert manager.get_device("mock-desk-1").connected

    asyncio.run(scenario())


def test_missing_handles_trigger_auto_scan(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path)
        DeviceSettingsStore(config.settings_path).update("mock-desk-1", saved=True)
        adapter = MockAdapter()
        manager = make_manager(config, adapter)
        await manager.startup()
        events = manager.events.subscribe()

        await manager.reconnect.run_once()
        await asyncio.sleep(0.1)

        [started] = [e for e in events.drain() if e.type == SCAN_STARTED]
        assert started.payload == {"durationMs": config.reconnect_scan_duration_ms, "type": "auto"}
        assert adapter.calls["start_scan"] == 1
        assert manager.get_device("mock-desk-1").connected

    asyncio.run(scenario())


def test_failed_reconnect_is_contained(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        await manager.start_scan(30)
        await asyncio.sleep(0.1)
        manager.set_settings("mock-desk-1", saved=True)
        adapter.fail_connect.add("mock-desk-1")

        await manager.reconnect.run_once()

        assert not manager.get_device("mock-desk-1").connected

    asyncio.run(scenario())


def test_loop_runs_in_background(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path, auto_reconnect=True)
        DeviceSettingsStore(config.settings_path).update("mock-desk-1", saved=True)
        manager = make_manager(config)
        await manager.startup()
        assert manager.reconnect.running

        await asyncio.sleep(0.2)
        assert manager.get_device("mock-desk-1").connected

        await manager.shutdown()
        assert not manager.reconnect.running

    asyncio.run(scenario())
