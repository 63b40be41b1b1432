"""Raw adapter: the body already is a canonical payload document."""

from __future__ import annotations

import json
from typing import Any

from hookfeed.adapters.base import BaseAdapter, InboundRequest
from hookfeed.adapters.utils import copy_body, copy_values, resolve_priority, sanitize_secrets
from hookfeed.errors import AdapterParseError
from hookfeed.models import FeedMessageCreate, number_priority

# Fields synthesized from the HTTP request when the caller leaves them out
_CAPTURED_KEYS = ("rawRequest", "rawHeaders", "rawQueryParams", "logs", "metadata")


class RawAdapter(BaseAdapter):
    name = "raw"

    def __init__(self) -> None:
        super().__init__()
        self._document: dict[str, Any] = {}

    def unmarshal_request(self, request: InboundRequest) -> None:
        try:
            document = json.loads(request.body)
        except (ValueError, RecursionError) as exc:
            raise AdapterParseError(self.name, f"body is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise AdapterParseError(self.name, "body must be a JSON object")

        captured = {
            "rawRequest": lambda: copy_body(request.body),
            "rawHeaders": lambda: copy_values(request.headers, sanitize_secrets),
            "rawQueryParams": lambda: copy_values(request.query, sanitize_secrets),
            "logs": list,
            "metadata": dict,
        }
        for key in _CAPTURED_KEYS:
            # JSON null counts as omitted
            if document.get(key) is None:
                document[key] = captured[key]()

        priority = document.get("priority")
        if isinstance(priority, str):
            _, warning = resolve_priority(priority)
            if warning:
                self.warn(warning)
        elif priority is not None and (
            isinstance(priority, bool)
            or not isinstance(priority, (int, float))
            or number_priority(priority) is None
        ):
            self.warn(f"invalid priority {priority!r}, using default")

        self._document = document

    def as_canonical_payload(self) -> FeedMessageCreate:
        return FeedMessageCreate.from_document(self._document)
