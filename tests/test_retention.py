"""Tests for per-feed retention enforcement."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hookfeed.config import RetentionConfig
from hookfeed.core.bus import EventBus, MessageCreated
from hookfeed.core.feeds import Feed, FeedCache
from hookfeed.core.retention import RetentionManager
from hookfeed.models import FeedMessageCreate
from hookfeed.store.messages import MessageStore


@pytest.fixture
async def store(tmp_path):
    s = MessageStore(tmp_path / "hookfeed.db")
    await s.start()
    yield s
    await s.stop()


@pytest.fixture
def cache():
    return FeedCache([
        Feed(name="Small", id="small", keys=["small"], retention={"max_count": 2}),
        Feed(name="Short", id="short", keys=["short"], retention={"max_age_days": 3}),
        Feed(name="Default", id="default", keys=["default"]),
    ])


async def add(store, feed_id, days_ago=0):
    received = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return await store.create(FeedMessageCreate(feed_id=feed_id, received_at=received))


class TestRetentionManager:
    async def test_trims_on_message_created(self, cache, store):
        bus = EventBus()
        manager = RetentionManager(RetentionConfig(), cache, store, bus)
        manager.register()
        await bus.start()

        for i in range(4):
            message = await add(store, "small", days_ago=4 - i)
            await bus.publish(MessageCreated(data={
                "message_id": message.id,
                "feed_id": "small",
                "priority": message.priority,
            }))
        await asyncio.wait_for(bus.drain(), timeout=2)

        assert await store.count("small") == 2
        await bus.stop()

    async def test_unknown_feed_ignored(self, cache, store):
        bus = EventBus()
        manager = RetentionManager(RetentionConfig(), cache, store, bus)
        manager.register()
        await bus.start()

        await add(store, "gone")
        await bus.publish(MessageCreated(data={"message_id": "x", "feed_id": "gone", "priority": 3}))
        await asyncio.wait_for(bus.drain(), timeout=2)

        assert await store.count("gone") == 1
        await bus.stop()

    async def test_sweep_applies_age_and_count(self, cache, store):
        for days in (10, 5, 1):
            await add(store, "short", days_ago=days)
        for days in (3, 2, 1):
            await add(store, "small", days_ago=days)
        await add(store, "default", days_ago=365)

        manager = RetentionManager(RetentionConfig(), cache, store, EventBus())
        removed = await manager.sweep()

        assert removed == 3
        assert await store.count("short") == 1
        assert await store.count("small") == 2
        assert await store.count("default") == 1

    async def test_start_runs_initial_sweep(self, cache, store):
        await add(store, "short", days_ago=10)
        manager = RetentionManager(RetentionConfig(sweep_interval=3600), cache, store, EventBus())
        await manager.start()
        for _ in range(50):
            if await store.count("short") == 0:
                break
            await asyncio.sleep(0.02)
        await manager.stop()
        assert await store.count("short") == 0
