from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from . import config
from .device_manager import DeviceManager
from .errors import (
    AdapterNotReady,
    ConnectionFailed,
    DeviceNotConnected,
    DeviceUnknown,
    HubError,
    PeripheralNotFound,
)
from .models import Device, UpdateSource
from .profiles import PROFILES

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0

app = FastAPI(title="lumenhub API", version="1.0.0")
manager = DeviceManager()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = (
    (DeviceUnknown, 404),
    (DeviceNotConnected, 409),
    (PeripheralNotFound, 409),
    (ConnectionFailed, 502),
    (AdapterNotReady, 503),
)


@app.exception_handler(HubError)
async def hub_error_handler(request: Request, exc: HubError) -> JSONResponse:
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


@app.on_event("startup")
async def startup_event() -> None:
    await manager.startup()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await manager.shutdown()


def _require_device(device_id: str) -> Device:
    device = manager.get_device(device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Unknown device")
    return device


class ScanRequest(BaseModel):
    duration: Optional[int] = Field(default=None, gt=0)


class ActionRequest(BaseModel):
    action: str


class ControlRequest(BaseModel):
    type: Optional[str] = None
    value: Any = None
    raw: Optional[str] = None
    characteristic: Optional[str] = None


class CharacteristicRequest(BaseModel):
    characteristic: str


class SettingsRequest(BaseModel):
    saved: Optional[bool] = None
    customName: Optional[str] = None
    profileId: Optional[str] = None
    targetChar: Optional[str] = None
    type: Optional[str] = None
    connectivity: Optional[str] = None
    protocol: Optional[str] = None


class StateRequest(BaseModel):
    state: Dict[str, Any]


class SweepPattern(BaseModel):
    name: Optional[str] = None
    characteristic: str
    hex: str


class SweepRequest(BaseModel):
    patterns: List[SweepPattern]
    delay: int = Field(default=1000, ge=0)
    readAfter: Optional[str] = "a041"


SETTINGS_FIELDS = {
    "saved": "saved",
    "customName": "custom_name",
    "profileId": "profile_id",
    "targetChar": "target_char",
    "type": "type",
    "connectivity": "connectivity",
    "protocol": "protocol",
}


@app.get("/api/health")
async def health() -> Dict[str, object]:
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "mockMode": manager.mock_mode,
        "adapterState": manager.state.adapter_state,
        "scanning": manager.state.scanning,
    }


@app.get("/api/profiles")
async def list_profiles() -> Dict[str, List[Dict[str, object]]]:
    return {"profiles": [profile.to_dict() for profile in PROFILES.values()]}


@app.get("/api/devices")
async def list_devices(include_wifi: bool = False) -> Dict[str, object]:
    devices = manager.list_devices(include_wifi=include_wifi)
    return {"devices": devices, "scanning": manager.state.scanning, "count": len(devices)}


@app.post("/api/devices")
async def start_scan(request: Optional[ScanRequest] = None) -> Dict[str, object]:
    duration = request.duration if request else None
    devices = await manager.start_scan(duration)
    return {"message": "Scan started", "devices": devices, "scanning": manager.state.scanning}


@app.delete("/api/devices")
async def stop_scan() -> Dict[str, object]:
    await manager.stop_scan()
    return {"message": "Scan stopped", "scanning": False}


@app.get("/api/devices/{device_id}")
async def get_device(device_id: str) -> Dict[str, object]:
    return _require_device(device_id).to_dict()


@app.post("/api/devices/{device_id}")
async def device_action(device_id: str, payload: ActionRequest) -> Dict[str, object]:
    _require_device(device_id)
    if payload.action == "connect":
        device = await manager.connect(device_id)
        return {"success": True, "device": device}
    if payload.action == "disconnect":
        await manager.disconnect(device_id)
        return {"success": True, "device": _require_device(device_id).to_dict()}
    raise HTTPException(status_code=400, detail="Unknown action %r" % payload.action)


@app.post("/api/devices/{device_id}/ping")
async def ping_device(device_id: str) -> Dict[str, object]:
    _require_device(device_id)
    reachable = await manager.ping_device(device_id)
    return {"device": device_id, "reachable": reachable}


@app.get("/api/devices/{device_id}/control")
async def command_log(device_id: str, limit: int = 100) -> Dict[str, object]:
    return {"log": manager.get_command_log(limit, device_id=device_id)}


@app.post("/api/devices/{device_id}/control")
async def send_control(device_id: str, payload: ControlRequest) -> Dict[str, object]:
    _require_device(device_id)
    try:
        if payload.raw and payload.characteristic:
            success = await manager.write_raw(device_id, payload.characteristic, payload.raw)
            return {"success": success, "raw": True}
        if not payload.type:
            raise ValueError("Command type required")
        success = await manager.send_command(device_id, payload.type, payload.value)
    except ValueError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    return {"success": success, "command": {"type": payload.type, "value": payload.value}}


@app.delete("/api/devices/{device_id}/control")
async def clear_command_log(device_id: str) -> Dict[str, str]:
    manager.clear_command_log()
    return {"message": "Command log cleared"}


@app.get("/api/devices/{device_id}/read")
async def read_characteristic(device_id: str, characteristic: str) -> Dict[str, object]:
    _require_device(device_id)
    value = await manager.read_raw(device_id, characteristic)
    return {"characteristic": characteristic, "value": value}


@app.post("/api/devices/{device_id}/subscribe")
async def subscribe_characteristic(device_id: str, payload: CharacteristicRequest) -> Dict[str, object]:
    _require_device(device_id)
    success = await manager.subscribe(device_id, payload.characteristic)
    return {"success": success, "characteristic": payload.characteristic}


@app.post("/api/devices/{device_id}/save")
async def toggle_saved(device_id: str) -> Dict[str, object]:
    _require_device(device_id)
    saved = manager.toggle_saved(device_id)
    return {"success": True, "saved": saved}


@app.get("/api/devices/{device_id}/settings")
async def get_settings(device_id: str) -> Dict[str, object]:
    return {"settings": manager.get_settings(device_id)}


@app.post("/api/devices/{device_id}/settings")
async def update_settings(device_id: str, payload: SettingsRequest) -> Dict[str, object]:
    fields = {SETTINGS_FIELDS[key]: value for key, value in payload.dict(exclude_unset=True).items()}
    try:
        settings = manager.set_settings(device_id, **fields)
    except ValueError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    return {"success": True, "settings": settings}


@app.get("/api/devices/{device_id}/state")
async def get_state(device_id: str) -> Dict[str, object]:
    _require_device(device_id)
    state = await manager.get_light_state(device_id)
    return {"state": state}


@app.post("/api/devices/{device_id}/state")
async def update_state(device_id: str, payload: StateRequest) -> Dict[str, object]:
    _require_device(device_id)
    state = await manager.update_state(device_id, payload.state, UpdateSource.UI)
    return {"state": state}


@app.post("/api/devices/{device_id}/fuzz")
async def run_pattern_sweep(device_id: str, payload: SweepRequest) -> Dict[str, object]:
    _require_device(device_id)
    patterns = [pattern.dict() for pattern in payload.patterns]
    results = await manager.run_pattern_sweep(device_id, patterns, payload.delay, payload.readAfter)
    return {"results": results}


def format_sse(message: Dict[str, Any]) -> bytes:
    return ("data: %s\n\n" % json.dumps(message)).encode("utf-8")


@app.get("/api/events")
async def stream_events(request: Request) -> StreamingResponse:
    subscription = manager.events.subscribe()

    async def gen():
        try:
            yield format_sse({"type": "connected", "timestamp": time.time()})
            while not await request.is_disconnected():
                try:
                    event = await subscription.get(timeout=HEARTBEAT_INTERVAL)
                except asyncio.TimeoutError:
                    yield format_sse({"type": "heartbeat", "timestamp": time.time()})
                    continue
                yield format_sse(event.to_dict())
        finally:
            subscription.close()

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}
    return StreamingResponse(gen(), media_type="text/event-stream", headers=headers)


def run() -> None:
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
