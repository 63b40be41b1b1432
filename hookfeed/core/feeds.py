"""Feed configuration model, loader and the read-only feed cache."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hookfeed.errors import ConfigError
from hookfeed.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_RETENTION_COUNT = 10_000
DEFAULT_RETENTION_MAX_DAYS = 10_000


class Retention(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_count: int = DEFAULT_RETENTION_COUNT
    max_age_days: int = DEFAULT_RETENTION_MAX_DAYS

    @field_validator("max_count", "max_age_days", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any, info: pydantic.ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    def to_dict(self) -> dict[str, int]:
        return {"maxCount": self.max_count, "maxAgeDays": self.max_age_days}


class Feed(BaseModel):
    """A configured webhook destination. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    id: str = ""
    keys: tuple[str, ...] = Field(min_length=1)
    category: str = ""
    description: str = ""
    middleware: tuple[str, ...] = ()
    adapters_enabled: bool = True
    adapters: tuple[str, ...] = ()
    retention: Retention = Field(default_factory=Retention)

    @field_validator("middleware", "adapters", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return () if value is None else value

    @field_validator("adapters_enabled", mode="before")
    @classmethod
    def _null_toggle(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator("retention", mode="before")
    @classmethod
    def _null_retention(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("keys")
    @classmethod
    def _non_blank_keys(cls, keys: tuple[str, ...]) -> tuple[str, ...]:
        stripped = tuple(k.strip() for k in keys)
        if any(not k for k in stripped):
            raise ValueError("routing keys must not be blank")
        return stripped

    @model_validator(mode="after")
    def _default_id(self) -> Feed:
        if not self.id:
            # frozen model, so bypass __setattr__
            object.__setattr__(self, "id", self.keys[0])
        return self

    def to_dict(self) -> dict[str, Any]:
        """Public representation; routing keys stay private."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "middleware": list(self.middleware),
            "adaptersEnabled": self.adapters_enabled,
            "adapters": list(self.adapters),
            "retention": self.retention.to_dict(),
        }


class FeedsFile(BaseModel):
    """The feed document: global middleware plus the feed list."""

    middleware: tuple[str, ...] = ()
    feeds: list[Feed] = Field(default_factory=list)

    @field_validator("middleware", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return () if value is None else value

    @model_validator(mode="after")
    def _check_feeds(self) -> FeedsFile:
        if not self.feeds:
            raise ValueError("at least one feed must be defined")

        key_owner: dict[str, str] = {}
        ids: set[str] = set()
        for i, feed in enumerate(self.feeds):
            if feed.id in ids:
                raise ValueError(f"feeds[{i}]: duplicate feed id '{feed.id}'")
            ids.add(feed.id)
            for key in feed.keys:
                if key in key_owner:
                    raise ValueError(
                        f"feeds[{i}]: routing key '{key}' already used by feed '{key_owner[key]}'"
                    )
                key_owner[key] = feed.id
        return self


def parse_feeds(data: Any) -> FeedsFile:
    if not isinstance(data, dict):
        raise ConfigError("feed configuration must be a mapping with a 'feeds' list")
    try:
        return FeedsFile.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ConfigError(f"invalid feed configuration: {exc}") from exc


def load_feeds(path: str | Path) -> FeedsFile:
    """Read and validate a YAML feed document. Raises ConfigError."""
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"failed to read feed configuration {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse feed configuration {path}: {exc}") from exc

    feeds_file = parse_feeds(data)
    log.info("feeds_loaded", path=str(path), count=len(feeds_file.feeds))
    return feeds_file


class FeedCache:
    """Read-only lookup tables built once from the configured feeds.

    Never mutated after construction, so concurrent readers need no lock.
    Lookups return None for unknown ids or keys.
    """

    def __init__(self, feeds: Iterable[Feed]) -> None:
        all_feeds: list[Feed] = []
        by_id: dict[str, Feed] = {}
        by_key: dict[str, str] = {}

        for feed in feeds:
            all_feeds.append(feed)
            by_id[feed.id] = feed
            for key in feed.keys:
                previous = by_key.get(key)
                if previous is not None and previous != feed.id:
                    log.warning("feed_key_overridden", key=key, previous=previous, feed_id=feed.id)
                by_key[key] = feed.id

        self._all = tuple(all_feeds)
        self._by_id = by_id
        self._by_key = by_key

    def get_by_id(self, feed_id: str) -> Feed | None:
        return self._by_id.get(feed_id)

    def get_by_key(self, key: str) -> Feed | None:
        feed_id = self._by_key.get(key)
        if feed_id is None:
            return None
        return self._by_id.get(feed_id)

    def all(self) -> tuple[Feed, ...]:
        return self._all

    def __len__(self) -> int:
        return len(self._all)
