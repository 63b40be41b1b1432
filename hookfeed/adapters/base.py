"""Adapter interface and the framework-independent request snapshot."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from multidict import CIMultiDict, CIMultiDictProxy, MultiDict, MultiDictProxy

from hookfeed.models import FeedMessageCreate

if TYPE_CHECKING:
    from aiohttp import web


@dataclass
class InboundRequest:
    """Everything an adapter may look at: body bytes, headers, query."""

    body: bytes = b""
    headers: CIMultiDict[str] | CIMultiDictProxy[str] = field(default_factory=CIMultiDict)
    query: MultiDict[str] | MultiDictProxy[str] = field(default_factory=MultiDict)
    route_key: str = ""

    @classmethod
    async def from_web(cls, request: web.Request, route_key: str) -> InboundRequest:
        return cls(
            body=await request.read(),
            headers=request.headers,
            query=request.query,
            route_key=route_key,
        )

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class BaseAdapter(ABC):
    """Turns one inbound request into a canonical payload.

    Create a fresh instance per request: ``unmarshal_request`` fills
    instance state that ``as_canonical_payload`` then reads.
    """

    def __init__(self) -> None:
        # Non-fatal parse problems, reported to the caller for logging
        self.warnings: list[str] = []

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def unmarshal_request(self, request: InboundRequest) -> None:
        """Parse the request. Raises AdapterParseError on structurally bad input."""
        ...

    @abstractmethod
    def as_canonical_payload(self) -> FeedMessageCreate: ...

    def warn(self, message: str) -> None:
        self.warnings.append(message)
