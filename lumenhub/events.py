from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .models import DeviceEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One observer's bounded view of the bus."""

    def __init__(self, bus: "EventBus", maxsize: int) -> None:
        self._bus = bus
        self._queue: "asyncio.Queue[DeviceEvent]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: DeviceEvent) -> None:
        if self.closed:
            return
        if self._queue.full():
            # slow consumer: discard the oldest event
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> DeviceEvent:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def drain(self) -> List[DeviceEvent]:
        events: List[DeviceEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> DeviceEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()


class EventBus:
    """Publish/subscribe channel for device lifecycle events.

    ``publish`` never waits on subscribers: each one owns a bounded queue and
    a full queue loses its oldest event.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, maxsize or self._queue_size)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> DeviceEvent:
        event = DeviceEvent(type=event_type, payload=dict(payload or {}))
        logger.debug("event %s %s", event_type, event.payload.get("id") or event.payload.get("deviceId") or "")
        for subscription in list(self._subscribers):
            subscription.offer(event)
        return event
