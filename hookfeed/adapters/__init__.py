"""Request adapters that normalize webhooks into canonical payloads."""

from hookfeed.adapters.base import BaseAdapter, InboundRequest
from hookfeed.adapters.ntfy import NtfyAdapter
from hookfeed.adapters.raw import RawAdapter
from hookfeed.errors import AdapterParseError

ADAPTERS: dict[str, type[BaseAdapter]] = {
    RawAdapter.name: RawAdapter,
    NtfyAdapter.name: NtfyAdapter,
}

DEFAULT_ADAPTER = RawAdapter.name


def create_adapter(name: str) -> BaseAdapter:
    """Return a fresh adapter instance; adapters are never shared between requests."""
    try:
        return ADAPTERS[name.lower()]()
    except KeyError:
        raise AdapterParseError(name, "unknown adapter") from None


__all__ = [
    "ADAPTERS",
    "DEFAULT_ADAPTER",
    "BaseAdapter",
    "InboundRequest",
    "NtfyAdapter",
    "RawAdapter",
    "create_adapter",
]
