"""In-process event bus for work that follows a successful ingestion.

Publishing never waits on subscribers: each subscriber drains its own
bounded queue in a background task, and a full queue drops the event.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine
from uuid import uuid4

from hookfeed.models import utcnow
from hookfeed.utils.logging import get_logger

log = get_logger(__name__)


class EventType(str, Enum):
    MESSAGE_CREATED = "message.created"


@dataclass
class Event:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class MessageCreated(Event):
    type: EventType = field(default=EventType.MESSAGE_CREATED, init=False)
    # data keys: message_id, feed_id, priority


Handler = Callable[[Event], Coroutine[Any, Any, None]]


@dataclass
class _Subscription:
    event_type: EventType
    handler: Handler
    queue: asyncio.Queue[Event]
    task: asyncio.Task[None] | None = None

    @property
    def label(self) -> str:
        return f"{self.event_type.value}:{getattr(self.handler, '__qualname__', repr(self.handler))}"


class EventBus:
    def __init__(self, max_queue_size: int = 256) -> None:
        self._max_queue_size = max_queue_size
        self._subscriptions: list[_Subscription] = []

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._subscriptions.append(
            _Subscription(event_type, handler, asyncio.Queue(maxsize=self._max_queue_size))
        )

    async def publish(self, event: Event) -> None:
        for sub in self._subscriptions:
            if sub.event_type != event.type:
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                log.warning("event_dropped", subscriber=sub.label, event_id=event.id)

    async def start(self) -> None:
        for sub in self._subscriptions:
            if sub.task is None:
                sub.task = asyncio.create_task(self._consume(sub), name=f"bus-{sub.label}")

    async def _consume(self, sub: _Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                await sub.handler(event)
            except Exception:
                log.exception("event_handler_failed", subscriber=sub.label, event_id=event.id)
            finally:
                sub.queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await asyncio.gather(*(sub.queue.join() for sub in self._subscriptions))

    async def stop(self) -> None:
        tasks = [sub.task for sub in self._subscriptions if sub.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for sub in self._subscriptions:
            sub.task = None
