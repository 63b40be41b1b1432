"""Feed message store with SQLite backend."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable
from uuid import uuid4

import aiosqlite

from hookfeed.errors import MessageNotFoundError, StoreError
from hookfeed.models import (
    DEFAULT_PRIORITY,
    DeleteFilter,
    FeedMessage,
    FeedMessageCreate,
    MessageQuery,
    MessageState,
    Page,
    clamp_priority,
    utcnow,
)
from hookfeed.utils.logging import get_logger

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS feed_messages (
    id TEXT PRIMARY KEY,
    feed_id TEXT NOT NULL,
    raw_request TEXT NOT NULL DEFAULT '{}',
    raw_headers TEXT NOT NULL DEFAULT '{}',
    raw_query_params TEXT NOT NULL DEFAULT '{}',
    title TEXT NOT NULL DEFAULT '',
    message TEXT NOT NULL DEFAULT '',
    priority INTEGER NOT NULL DEFAULT 3 CHECK (priority BETWEEN 1 AND 5),
    tags TEXT NOT NULL DEFAULT '[]',
    logs TEXT NOT NULL DEFAULT '[]',
    metadata TEXT NOT NULL DEFAULT '{}',
    state TEXT NOT NULL DEFAULT 'new'
        CHECK (state IN ('new', 'acknowledged', 'resolved', 'archived')),
    state_changed_at TEXT,
    received_at TEXT NOT NULL,
    processed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_feed_messages_feed_received
    ON feed_messages (feed_id, received_at DESC);
CREATE INDEX IF NOT EXISTS idx_feed_messages_state ON feed_messages (state);
"""

_COLUMNS = (
    "id, feed_id, raw_request, raw_headers, raw_query_params, title, message, "
    "priority, tags, logs, metadata, state, state_changed_at, received_at, "
    "processed_at, created_at, updated_at"
)

# SQLite caps bound parameters per statement
_MAX_PARAMS = 500


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_message(row: Iterable[Any]) -> FeedMessage:
    r = list(row)
    return FeedMessage(
        id=r[0],
        feed_id=r[1],
        raw_request=json.loads(r[2]),
        raw_headers=json.loads(r[3]),
        raw_query_params=json.loads(r[4]),
        title=r[5],
        message=r[6],
        priority=r[7] if r[7] is not None else DEFAULT_PRIORITY,
        tags=json.loads(r[8]),
        logs=json.loads(r[9]),
        metadata=json.loads(r[10]),
        state=MessageState(r[11]),
        state_changed_at=_dt(r[12]),
        received_at=_dt(r[13]),  # type: ignore[arg-type]
        processed_at=_dt(r[14]),
        created_at=_dt(r[15]),  # type: ignore[arg-type]
        updated_at=_dt(r[16]),  # type: ignore[arg-type]
    )


def _chunks(ids: list[str]) -> Iterable[list[str]]:
    for i in range(0, len(ids), _MAX_PARAMS):
        yield ids[i:i + _MAX_PARAMS]


class MessageStore:
    """Durable message persistence. Each public call is one transaction."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        log.info("message_store_started", path=str(self._db_path))

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("message store is not started")
        return self._db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, payload: FeedMessageCreate) -> FeedMessage:
        """Persist a canonical payload as a new message."""
        message_id = str(uuid4())
        now = _ts(utcnow())
        try:
            await self.db.execute(
                f"INSERT INTO feed_messages ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message_id,
                    payload.feed_id,
                    json.dumps(payload.raw_request),
                    json.dumps(payload.raw_headers),
                    json.dumps(payload.raw_query_params),
                    payload.title,
                    payload.message,
                    clamp_priority(payload.priority),
                    json.dumps(payload.tags),
                    json.dumps(payload.logs),
                    json.dumps(payload.metadata),
                    payload.state.value,
                    None,
                    _ts(payload.received_at),
                    _ts(payload.processed_at),
                    now,
                    now,
                ),
            )
            await self.db.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            await self.db.rollback()
            raise StoreError(f"failed to create message: {exc}") from exc

        message = await self.get(message_id)
        assert message is not None
        return message

    async def update_state(self, message_id: str, state: MessageState) -> FeedMessage:
        now = _ts(utcnow())
        cursor = await self.db.execute(
            "UPDATE feed_messages SET state = ?, state_changed_at = ?, updated_at = ? "
            "WHERE id = ?",
            (state.value, now, now, message_id),
        )
        await self.db.commit()
        if cursor.rowcount == 0:
            raise MessageNotFoundError(message_id)
        message = await self.get(message_id)
        assert message is not None
        return message

    async def bulk_update_state(self, message_ids: list[str], state: MessageState) -> None:
        now = _ts(utcnow())
        for chunk in _chunks(message_ids):
            marks = ", ".join("?" for _ in chunk)
            await self.db.execute(
                "UPDATE feed_messages SET state = ?, state_changed_at = ?, updated_at = ? "
                f"WHERE id IN ({marks})",
                (state.value, now, now, *chunk),
            )
        await self.db.commit()

    async def delete(self, message_id: str) -> None:
        cursor = await self.db.execute(
            "DELETE FROM feed_messages WHERE id = ?",
            (message_id,),
        )
        await self.db.commit()
        if cursor.rowcount == 0:
            raise MessageNotFoundError(message_id)

    async def bulk_delete(
        self,
        message_ids: list[str] | None = None,
        filter: DeleteFilter | None = None,
    ) -> int:
        """Delete by id set, or else by filter. Returns the number deleted.

        An empty filter matches nothing rather than everything.
        """
        if message_ids:
            count = 0
            for chunk in _chunks(message_ids):
                marks = ", ".join("?" for _ in chunk)
                cursor = await self.db.execute(
                    f"DELETE FROM feed_messages WHERE id IN ({marks})", tuple(chunk)
                )
                count += cursor.rowcount
            await self.db.commit()
            return count

        if filter is None or filter.empty:
            return 0

        clauses: list[str] = []
        params: list[Any] = []
        if filter.priority is not None:
            clauses.append("priority = ?")
            params.append(filter.priority)
        if filter.older_than is not None:
            clauses.append("received_at < ?")
            params.append(_ts(filter.older_than))
        cursor = await self.db.execute(
            f"DELETE FROM feed_messages WHERE {' AND '.join(clauses)}", tuple(params)
        )
        await self.db.commit()
        return cursor.rowcount

    async def trim_feed(self, feed_id: str, max_count: int) -> int:
        """Keep only the newest ``max_count`` messages of a feed."""
        cursor = await self.db.execute(
            "DELETE FROM feed_messages WHERE feed_id = ? AND id NOT IN ("
            "SELECT id FROM feed_messages WHERE feed_id = ? "
            "ORDER BY received_at DESC, created_at DESC LIMIT ?)",
            (feed_id, feed_id, max(0, max_count)),
        )
        await self.db.commit()
        return cursor.rowcount

    async def expire_feed(self, feed_id: str, max_age_days: int) -> int:
        """Delete a feed's messages received more than ``max_age_days`` ago."""
        cutoff = utcnow() - timedelta(days=max_age_days)
        cursor = await self.db.execute(
            "DELETE FROM feed_messages WHERE feed_id = ? AND received_at < ?",
            (feed_id, _ts(cutoff)),
        )
        await self.db.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, message_id: str) -> FeedMessage | None:
        cursor = await self.db.execute(
            f"SELECT {_COLUMNS} FROM feed_messages WHERE id = ?",
            (message_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_message(row)

    async def search(self, query: MessageQuery) -> Page:
        """Filter, count and page through messages, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if query.feed_id:
            clauses.append("feed_id = ?")
            params.append(query.feed_id)
        if query.priority is not None:
            clauses.append("priority = ?")
            params.append(query.priority)
        if query.state is not None:
            clauses.append("state = ?")
            params.append(query.state.value)
        if query.since is not None:
            clauses.append("received_at >= ?")
            params.append(_ts(query.since))
        if query.until is not None:
            clauses.append("received_at <= ?")
            params.append(_ts(query.until))
        if query.q:
            clauses.append("(title LIKE ? OR message LIKE ? OR tags LIKE ?)")
            pattern = f"%{query.q}%"
            params.extend([pattern, pattern, pattern])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        cursor = await self.db.execute(
            f"SELECT COUNT(*) FROM feed_messages {where}", tuple(params)
        )
        total_row = await cursor.fetchone()
        total = total_row[0] if total_row else 0

        cursor = await self.db.execute(
            f"SELECT {_COLUMNS} FROM feed_messages {where} "
            "ORDER BY received_at DESC, created_at DESC LIMIT ? OFFSET ?",
            (*params, query.limit, query.skip),
        )
        rows = await cursor.fetchall()
        return Page(total=total, items=[_row_to_message(row) for row in rows])

    async def count(self, feed_id: str | None = None) -> int:
        if feed_id is None:
            cursor = await self.db.execute("SELECT COUNT(*) FROM feed_messages")
        else:
            cursor = await self.db.execute(
                "SELECT COUNT(*) FROM feed_messages WHERE feed_id = ?", (feed_id,)
            )
        row = await cursor.fetchone()
        return row[0] if row else 0
