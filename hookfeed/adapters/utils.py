"""Helpers shared by the adapters: lookups, field parsers and request capture."""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Mapping, TypeVar

from hookfeed.models import DEFAULT_PRIORITY, parse_priority

T = TypeVar("T")

REDACTED = "<redacted>"

_SECRET_HEADERS = frozenset({
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "api-key",
    "apikey",
})
_AUTH_HEADERS = frozenset({"authorization", "proxy-authorization"})
_SECRET_PARAMS = frozenset({"token", "api_key", "apikey", "secret", "password", "key"})

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off", ""})


def get_header(headers: Mapping[str, str], *keys: str) -> str:
    """Value of the first header in ``keys`` that is present and non-empty."""
    for key in keys:
        value = headers.get(key)
        if value:
            return value
    return ""


def get_query_param(query: Mapping[str, str], *keys: str) -> str:
    for key in keys:
        value = query.get(key)
        if value:
            return value
    return ""


def first_present(sources: Iterable[Callable[[], T | None]]) -> T | None:
    """Evaluate source extractors in order and return the first non-empty value."""
    for source in sources:
        value = source()
        if value is not None and value != "" and value != []:
            return value
    return None


def split_and_trim(value: str) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def resolve_priority(value: str) -> tuple[int, str | None]:
    """Parse priority text, returning the priority and a warning for bad input.

    Bad input degrades to the default priority rather than failing.
    """
    try:
        return parse_priority(value), None
    except ValueError:
        return DEFAULT_PRIORITY, f"invalid priority {value!r}, using {DEFAULT_PRIORITY}"


def parse_bool(value: str) -> tuple[bool, str | None]:
    text = value.strip().lower()
    if text in _TRUE:
        return True, None
    if text in _FALSE:
        return False, None
    return False, f"invalid boolean {value!r}, using false"


def sanitize_secrets(key: str, value: str) -> str:
    """Redact credentials from captured headers and query parameters."""
    lower = key.lower()
    if lower in _AUTH_HEADERS:
        # keep the scheme (Bearer, Basic, ...) for debugging
        scheme, sep, _ = value.partition(" ")
        return f"{scheme} {REDACTED}" if sep else REDACTED
    if lower in _SECRET_HEADERS or lower in _SECRET_PARAMS:
        return REDACTED
    return value


def copy_values(
    raw: Any,
    *middleware: Callable[[str, str], str],
) -> dict[str, Any]:
    """Snapshot a multidict as JSON-friendly data.

    Single values become strings, repeated keys become lists, empty keys
    are dropped. Each value passes through ``middleware`` in order.
    """
    result: dict[str, Any] = {}
    for key in dict.fromkeys(raw.keys()):
        values = []
        for value in raw.getall(key):
            for fn in middleware:
                value = fn(key, value)
            values.append(value)
        if len(values) == 1:
            result[key] = values[0]
        elif values:
            result[key] = values
    return result


def copy_body(body: bytes) -> Any:
    """Capture a request body as a JSON value.

    Empty bodies become ``{}``, JSON bodies are kept as parsed, anything
    else is wrapped as ``{"$body": text}``.
    """
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except (ValueError, RecursionError):
        return {"$body": body.decode("utf-8", errors="replace")}
