"""ntfy-compatible adapter.

Every notification field can arrive in three places. The first non-empty
value wins, in this order:

1. request headers (``X-Title`` or ``Title``, ...)
2. query parameters (``title`` or ``t``, ...)
3. a JSON body, when the request declares a JSON content type

and adapter defaults fill whatever is still missing. The topic always comes
from the URL path; a ``topic`` in the body is ignored.
"""

from __future__ import annotations

import json
from typing import Any, Callable

from hookfeed.adapters.base import BaseAdapter, InboundRequest
from hookfeed.adapters.utils import (
    copy_body,
    copy_values,
    first_present,
    get_header,
    get_query_param,
    parse_bool,
    resolve_priority,
    sanitize_secrets,
    split_and_trim,
)
from hookfeed.models import DEFAULT_PRIORITY, FeedMessageCreate, number_priority

_HEADER_KEYS = {
    "title": ("X-Title", "Title"),
    "message": ("X-Message", "Message"),
    "priority": ("X-Priority", "Priority"),
    "tags": ("X-Tags", "Tags"),
    "click": ("X-Click", "Click"),
    "icon": ("X-Icon", "Icon"),
    "markdown": ("X-Markdown", "Markdown"),
}

_QUERY_KEYS = {
    "title": ("title", "t"),
    "message": ("message", "m"),
    "priority": ("priority", "p"),
    "tags": ("tags", "ta"),
    "click": ("click",),
    "icon": ("icon",),
    "markdown": ("markdown", "md"),
}


def _is_json(content_type: str) -> bool:
    return content_type == "application/json" or content_type.endswith("+json")


class NtfyAdapter(BaseAdapter):
    name = "ntfy"

    def __init__(self) -> None:
        super().__init__()
        self._payload = FeedMessageCreate()

    def unmarshal_request(self, request: InboundRequest) -> None:
        body = self._json_fields(request)

        def resolve(field: str) -> Any:
            sources: list[Callable[[], Any]] = [lambda: body.get(field)]
            if field in _QUERY_KEYS:
                sources.insert(0, lambda: get_query_param(request.query, *_QUERY_KEYS[field]))
            if field in _HEADER_KEYS:
                sources.insert(0, lambda: get_header(request.headers, *_HEADER_KEYS[field]))
            return first_present(sources)

        title = resolve("title")
        message = resolve("message")
        priority = self._priority(resolve("priority"))
        tags = self._tags(resolve("tags"))
        click = resolve("click")
        icon = resolve("icon")
        markdown = self._markdown(resolve("markdown"))
        actions = resolve("actions")

        if message is None:
            message = request.text

        metadata: dict[str, Any] = {}
        if tags:
            metadata["tags"] = tags
        if click:
            metadata["click"] = str(click)
        if icon:
            metadata["icon"] = str(icon)
        if isinstance(actions, list) and actions:
            metadata["actions"] = actions
        if markdown:
            metadata["markdown"] = True

        self._payload = FeedMessageCreate(
            feed_id=request.route_key,
            raw_request=copy_body(request.body),
            raw_headers=copy_values(request.headers, sanitize_secrets),
            raw_query_params=copy_values(request.query, sanitize_secrets),
            title="" if title is None else str(title),
            message=str(message),
            priority=priority,
            tags=tags,
            metadata=metadata,
        )

    def as_canonical_payload(self) -> FeedMessageCreate:
        return self._payload

    # ------------------------------------------------------------------
    # Field parsers
    # ------------------------------------------------------------------

    def _json_fields(self, request: InboundRequest) -> dict[str, Any]:
        if not _is_json(request.content_type) or not request.body.strip():
            return {}
        try:
            data = json.loads(request.body)
        except (ValueError, RecursionError):
            self.warn("body declared as JSON but could not be parsed")
            return {}
        if not isinstance(data, dict):
            self.warn("JSON body is not an object, ignoring its fields")
            return {}
        # ntfy treats 0 and false as "not set"
        return {
            k: v for k, v in data.items()
            if v is not False and not (type(v) is int and v == 0)
        }

    def _priority(self, value: Any) -> int:
        if value is None:
            return DEFAULT_PRIORITY
        if isinstance(value, str):
            priority, warning = resolve_priority(value)
            if warning:
                self.warn(warning)
            return priority
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            priority = number_priority(value)
            if priority is not None:
                return priority
        self.warn(f"invalid priority {value!r}, using {DEFAULT_PRIORITY}")
        return DEFAULT_PRIORITY

    def _tags(self, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return split_and_trim(value)
        if isinstance(value, list):
            return [str(tag).strip() for tag in value if str(tag).strip()]
        self.warn(f"invalid tags {value!r}, ignoring")
        return []

    def _markdown(self, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        flag, warning = parse_bool(str(value))
        if warning:
            self.warn(warning)
        return flag
