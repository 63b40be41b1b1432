"""Message records exchanged between adapters, services, the store and the API."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from hookfeed.errors import ValidationError

MIN_PRIORITY = 1
MAX_PRIORITY = 5
DEFAULT_PRIORITY = 3

PRIORITY_NAMES = {
    "min": 1,
    "low": 2,
    "default": 3,
    "high": 4,
    "max": 5,
    "urgent": 5,
}


class MessageState(str, Enum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    ARCHIVED = "archived"

    @classmethod
    def parse(cls, value: Any) -> MessageState:
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise ValidationError(f"invalid state {value!r} (expected one of: {allowed})") from None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_priority(value: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, value))


def number_priority(value: int | float) -> int | None:
    """Clamp a JSON number into [1, 5]. Infinity and NaN give None."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return clamp_priority(int(value))


def parse_priority(value: str) -> int:
    """Convert ntfy-style priority text to an int in [1, 5].

    Accepts the named buckets (min, low, default, high, max, urgent) and
    integers, which are clamped. Empty text means the default. Raises
    ValueError for anything else.
    """
    text = value.strip().lower()
    if not text:
        return DEFAULT_PRIORITY
    if text in PRIORITY_NAMES:
        return PRIORITY_NAMES[text]
    return clamp_priority(int(text))


def coerce_priority(value: Any) -> int:
    """Best-effort priority from an arbitrary JSON value; never raises."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_PRIORITY
    if isinstance(value, (int, float)):
        priority = number_priority(value)
        return DEFAULT_PRIORITY if priority is None else priority
    if isinstance(value, str):
        try:
            return parse_priority(value)
        except ValueError:
            return DEFAULT_PRIORITY
    return DEFAULT_PRIORITY


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [item if isinstance(item, str) else str(item) for item in value]


@dataclass
class FeedMessageCreate:
    """Canonical payload produced by an adapter and handed to the store."""

    feed_id: str = ""
    raw_request: Any = field(default_factory=dict)
    raw_headers: Any = field(default_factory=dict)
    raw_query_params: Any = field(default_factory=dict)
    title: str = ""
    message: str = ""
    priority: int = DEFAULT_PRIORITY
    tags: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    state: MessageState = MessageState.NEW
    received_at: datetime = field(default_factory=utcnow)
    processed_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        """Render as the camelCase JSON document scripts and clients see."""
        return {
            "feedId": self.feed_id,
            "rawRequest": self.raw_request,
            "rawHeaders": self.raw_headers,
            "rawQueryParams": self.raw_query_params,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "tags": list(self.tags),
            "logs": list(self.logs),
            "metadata": dict(self.metadata),
            "state": self.state.value,
            "receivedAt": _iso(self.received_at),
        }

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        base: FeedMessageCreate | None = None,
    ) -> FeedMessageCreate:
        """Build a payload from a camelCase document.

        Keys that are absent or carry the wrong JSON type keep the value
        from ``base`` (or the defaults), so a sloppy document never fails
        here. Priority is always clamped into range.
        """
        if base is None:
            out = cls()
        else:
            out = replace(
                base,
                tags=list(base.tags),
                logs=list(base.logs),
                metadata=dict(base.metadata),
            )

        if isinstance(document.get("feedId"), str):
            out.feed_id = document["feedId"]
        for key, attr in (
            ("rawRequest", "raw_request"),
            ("rawHeaders", "raw_headers"),
            ("rawQueryParams", "raw_query_params"),
        ):
            if document.get(key) is not None:
                setattr(out, attr, document[key])
        if isinstance(document.get("title"), str):
            out.title = document["title"]
        if isinstance(document.get("message"), str):
            out.message = document["message"]
        if "priority" in document:
            out.priority = coerce_priority(document["priority"])
        tags = _string_list(document.get("tags"))
        if tags is not None:
            out.tags = tags
        logs = _string_list(document.get("logs"))
        if logs is not None:
            out.logs = logs
        if isinstance(document.get("metadata"), dict):
            out.metadata = dict(document["metadata"])
        if document.get("state") in {s.value for s in MessageState}:
            out.state = MessageState(document["state"])
        received_at = parse_time(document.get("receivedAt"))
        if received_at is not None:
            out.received_at = received_at
        return out


@dataclass
class FeedMessage:
    id: str
    feed_id: str
    raw_request: Any
    raw_headers: Any
    raw_query_params: Any
    title: str
    message: str
    priority: int
    tags: list[str]
    logs: list[str]
    metadata: dict[str, Any]
    state: MessageState
    state_changed_at: datetime | None
    received_at: datetime
    processed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "feedId": self.feed_id,
            "rawRequest": self.raw_request,
            "rawHeaders": self.raw_headers,
            "rawQueryParams": self.raw_query_params,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "tags": self.tags,
            "logs": self.logs,
            "metadata": self.metadata,
            "state": self.state.value,
            "stateChangedAt": _iso(self.state_changed_at),
            "receivedAt": _iso(self.received_at),
            "processedAt": _iso(self.processed_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class WebhookResponse:
    success: bool
    message_id: str
    feed_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "messageId": self.message_id,
            "feedId": self.feed_id,
        }


@dataclass
class DeleteFilter:
    priority: int | None = None
    older_than: datetime | None = None

    @property
    def empty(self) -> bool:
        return self.priority is None and self.older_than is None


@dataclass
class MessageQuery:
    feed_id: str | None = None
    priority: int | None = None
    state: MessageState | None = None
    since: datetime | None = None
    until: datetime | None = None
    q: str | None = None
    skip: int = 0
    limit: int = 100

    MAX_LIMIT = 1000

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> MessageQuery:
        """Parse URL query parameters; raises ValidationError on bad input."""
        query = cls()
        query.feed_id = params.get("feedId") or params.get("feedSlug") or None
        query.q = params.get("q") or None

        if params.get("priority"):
            priority = _int_param(params, "priority")
            if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
                raise ValidationError("priority must be between 1 and 5")
            query.priority = priority
        if params.get("state"):
            query.state = MessageState.parse(params["state"])
        for name in ("since", "until"):
            if params.get(name):
                parsed = parse_time(params[name])
                if parsed is None:
                    raise ValidationError(f"{name} must be an ISO 8601 timestamp")
                setattr(query, name, parsed)
        if params.get("skip"):
            query.skip = max(0, _int_param(params, "skip"))
        if params.get("limit"):
            query.limit = max(1, min(cls.MAX_LIMIT, _int_param(params, "limit")))
        return query


def _int_param(params: Mapping[str, str], name: str) -> int:
    try:
        return int(params[name])
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


@dataclass
class Page:
    total: int
    items: list[FeedMessage]

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "items": [m.to_dict() for m in self.items]}
