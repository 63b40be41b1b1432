"""Per-feed retention: count trimming on create plus a periodic age sweep."""

from __future__ import annotations

import asyncio

from hookfeed.config import RetentionConfig
from hookfeed.core.bus import Event, EventBus, EventType
from hookfeed.core.feeds import FeedCache
from hookfeed.store.messages import MessageStore
from hookfeed.utils.logging import get_logger

log = get_logger(__name__)


class RetentionManager:
    def __init__(
        self,
        config: RetentionConfig,
        cache: FeedCache,
        store: MessageStore,
        bus: EventBus,
    ) -> None:
        self._config = config
        self._cache = cache
        self._store = store
        self._bus = bus
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []

    def register(self) -> None:
        """Subscribe to bus events. Must run before ``bus.start()``."""
        self._bus.subscribe(EventType.MESSAGE_CREATED, self._on_message_created)

    async def start(self) -> None:
        self._running = True
        self._tasks.append(asyncio.create_task(self._sweep_loop(), name="retention-sweep"))
        log.info("retention_started", sweep_interval=self._config.sweep_interval)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _on_message_created(self, event: Event) -> None:
        feed = self._cache.get_by_id(event.data["feed_id"])
        if feed is None:
            return
        removed = await self._store.trim_feed(feed.id, feed.retention.max_count)
        if removed:
            log.info("retention_trimmed", feed_id=feed.id, removed=removed)

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except Exception:
                log.exception("retention_sweep_error")
            await asyncio.sleep(self._config.sweep_interval)

    async def sweep(self) -> int:
        """Apply both limits to every feed; returns the number of messages removed."""
        total = 0
        for feed in self._cache.all():
            expired = await self._store.expire_feed(feed.id, feed.retention.max_age_days)
            trimmed = await self._store.trim_feed(feed.id, feed.retention.max_count)
            if expired or trimmed:
                log.info("retention_swept", feed_id=feed.id, expired=expired, trimmed=trimmed)
            total += expired + trimmed
        return total
