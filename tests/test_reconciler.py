from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from lumenhub.controllers import MockAdapter
from lumenhub.models import DEVICE_UPDATED, UpdateSource

from conftest import make_config, make_manager


async def _connected(manager, device_id: str) -> None:
    await manager.startup()
    await manager.start_scan(30)
    await asyncio.sleep(0.1)
    await manager.connect(device_id)


def test_unknown_device_is_ignored(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        events = manager.events.subscribe()

        assert await manager.update_state("ghost", {"power": True}) is None
        assert events.drain() == []
        assert manager.store.get("ghost") is None
        assert adapter.writes == []

    asyncio.run(scenario())


def test_hardware_updates_are_not_pushed_back(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await _connected(manager, "mock-strip-1")
        events = manager.events.subscribe()

        state = await manager.update_state("mock-strip-1", {"brightness": 10}, UpdateSource.HARDWARE)

        assert state["brightness"] == 10
        assert state["power"] is False
        assert manager.store.get("mock-strip-1").last_state["brightness"] == 10
        assert adapter.writes == []
        [event] = events.drain()
        assert event.type == DEVICE_UPDATED
        assert event.payload["source"] == "hardware"

    asyncio.run(scenario())


def test_ui_updates_sync_each_key(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await _connected(manager, "mock-strip-1")

        await manager.update_state("mock-strip-1", {"power": True, "color": {"r": 1, "g": 1, "b": 1}, "brightness": 20})

        # color has no raw encoding; the other keys still go out
        assert [data for _, _, data, _ in adapter.writes] == [b"\x01", bytes.fromhex("0214")]
        assert manager.get_device("mock-strip-1").state["color"] == {"r": 1, "g": 1, "b": 1}

    asyncio.run(scenario())


def test_sync_failure_on_one_key_does_not_stop_others(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await _connected(manager, "mock-strip-1")
        real_send = manager.interaction.send_command
        sent = []

        async def flaky(device_id, command, *, record_state=True):
            if command.type == "power":
                raise RuntimeError("radio hiccup")
            sent.append(command.type)
            return await real_send(device_id, command, record_state=record_state)

        monkeypatch.setattr(manager.interaction, "send_command", flaky)
        state = await manager.update_state("mock-strip-1", {"power": True, "brightness": 30})

        assert sent == ["brightness"]
        assert state["power"] is True
        assert manager.store.get("mock-strip-1").last_state["power"] is True

    asyncio.run(scenario())


def test_offline_ble_device_keeps_state_for_later(tmp_path: Path) -> None:
    async def scenario() -> None:
        adapter = MockAdapter()
        manager = make_manager(make_config(tmp_path), adapter)
        await manager.startup()
        await manager.start_scan(30)
        await asyncio.sleep(0.1)

        await manager.update_state("mock-strip-1", {"power": True})

        assert adapter.writes == []
        assert manager.store.get("mock-strip-1").last_state == {"power": True}

    asyncio.run(scenario())


def test_wifi_ac_commands_flow_through_reconciler(tmp_path: Path) -> None:
    async def scenario() -> None:
        manager = make_manager(make_config(tmp_path, seed_wifi_demo=True))
        await manager.startup()
        events = manager.events.subscribe()

        assert await manager.send_command("192.168.1.50", "targetTemp", 25) is True
        assert await manager.send_command("192.168.1.50", "mode", "heat") is True

        assert manager.wifi.get_state("192.168.1.50")["targetTemp"] == 25
        assert manager.wifi.get_state("192.168.1.50")["mode"] == "heat"
        assert manager.get_device("192.168.1.50").state["targetTemp"] == 25
        assert manager.store.get("192.168.1.50").last_state == {"targetTemp": 25, "mode": "heat"}
        assert [e.payload["source"] for e in events.drain()] == ["hardware", "hardware"]

        with pytest.raises(ValueError):
            await manager.send_command("192.168.1.50", "mode", "turbo")

    asyncio.run(scenario())


def test_wifi_state_is_restored_from_settings(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path, seed_wifi_demo=True)
        first = make_manager(config)
        await first.startup()
        await first.send_command("192.168.1.50", "targetTemp", 19)
        await first.shutdown()

        second = make_manager(config)
        await second.startup()
        assert second.wifi.get_state("192.168.1.50")["targetTemp"] == 19
        assert await second.get_light_state("192.168.1.50") == second.wifi.get_state("192.168.1.50")

    asyncio.run(scenario())


def test_wifi_command_without_a_known_unit_fails(tmp_path: Path) -> None:
    async def scenario() -> None:
        config = make_config(tmp_path)
        first = make_manager(config)
        first.store.update("10.0.0.9", saved=True, connectivity="wifi")

        manager = make_manager(config)
        await manager.startup()
        assert manager.get_device("10.0.0.9").is_wifi
        assert manager.wifi.get_device("10.0.0.9") is None
        events = manager.events.subscribe()

        assert await manager.send_command("10.0.0.9", "power", True) is False
        assert events.drain() == []
        assert manager.store.get("10.0.0.9").last_state is None

    asyncio.run(scenario())


def test_repeated_hardware_state_is_persisted_once(tmp_path: Path) -> None:
    async def scenario() -> None:
        manager = make_manager(make_config(tmp_path))
        await _connected(manager, "mock-strip-1")
        await manager.state.drain_tasks()

        await manager.reconciler.update_state("mock-strip-1", {"brightness": 42}, UpdateSource.HARDWARE)
        writes = manager.store.writes
        await manager.reconciler.update_state("mock-strip-1", {"brightness": 42}, UpdateSource.HARDWARE)

        assert manager.store.writes == writes
        assert manager.store.get("mock-strip-1").last_state["brightness"] == 42

    asyncio.run(scenario())
