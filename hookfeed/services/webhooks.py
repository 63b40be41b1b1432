"""Webhook ingestion: resolve feed, adapt, transform, persist."""

from __future__ import annotations

from typing import Iterable

from hookfeed.adapters import DEFAULT_ADAPTER, InboundRequest, create_adapter
from hookfeed.adapters.utils import copy_body, copy_values, sanitize_secrets
from hookfeed.core.bus import EventBus, MessageCreated
from hookfeed.core.feeds import Feed, FeedCache
from hookfeed.errors import FeedNotFoundError, ScriptError
from hookfeed.models import FeedMessage, FeedMessageCreate, WebhookResponse, utcnow
from hookfeed.store.messages import MessageStore
from hookfeed.transform.engine import ScriptLoader, Transformer
from hookfeed.utils.logging import get_logger

log = get_logger(__name__)


class WebhookService:
    """Runs one inbound request through the ingestion pipeline.

    Stages run strictly in order (adapter, global scripts, feed scripts,
    store). Any failure before the store write leaves nothing persisted.
    """

    def __init__(
        self,
        cache: FeedCache,
        store: MessageStore,
        transformer: Transformer,
        loader: ScriptLoader,
        global_middleware: Iterable[str] = (),
        bus: EventBus | None = None,
    ) -> None:
        self._cache = cache
        self._store = store
        self._transformer = transformer
        self._loader = loader
        self._global_middleware = tuple(global_middleware)
        self._bus = bus

    def resolve_feed(self, routing_key: str) -> Feed:
        feed = self._cache.get_by_key(routing_key)
        if feed is None:
            raise FeedNotFoundError(routing_key)
        return feed

    async def process_webhook(
        self,
        routing_key: str,
        request: InboundRequest,
        adapter_name: str | None = None,
    ) -> WebhookResponse:
        message = await self.ingest(routing_key, request, adapter_name)
        return WebhookResponse(success=True, message_id=message.id, feed_id=message.feed_id)

    async def ingest(
        self,
        routing_key: str,
        request: InboundRequest,
        adapter_name: str | None = None,
    ) -> FeedMessage:
        """Like ``process_webhook`` but returns the stored message.

        ``adapter_name`` forces an adapter; otherwise the feed decides.
        """
        feed = self.resolve_feed(routing_key)

        if adapter_name is None and not feed.adapters_enabled:
            payload = self._capture(request)
            payload.logs.append("adapters disabled, stored verbatim")
        else:
            payload = self._adapt(feed, request, adapter_name)

        payload.feed_id = feed.id
        payload = await self._apply_scripts(feed, payload)
        payload.feed_id = feed.id
        payload.processed_at = utcnow()

        message = await self._store.create(payload)
        log.info(
            "webhook_processed",
            feed_id=feed.id,
            message_id=message.id,
            priority=message.priority,
        )

        if self._bus is not None:
            await self._bus.publish(
                MessageCreated(data={
                    "message_id": message.id,
                    "feed_id": message.feed_id,
                    "priority": message.priority,
                })
            )
        return message

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _capture(self, request: InboundRequest) -> FeedMessageCreate:
        return FeedMessageCreate(
            raw_request=copy_body(request.body),
            raw_headers=copy_values(request.headers, sanitize_secrets),
            raw_query_params=copy_values(request.query, sanitize_secrets),
        )

    def _adapt(
        self, feed: Feed, request: InboundRequest, adapter_name: str | None
    ) -> FeedMessageCreate:
        name = adapter_name or (feed.adapters[0] if feed.adapters else DEFAULT_ADAPTER)
        adapter = create_adapter(name)
        adapter.unmarshal_request(request)
        payload = adapter.as_canonical_payload()

        payload.logs.append(f"adapter: {adapter.name}")
        for warning in adapter.warnings:
            log.warning("adapter_warning", feed_id=feed.id, adapter=adapter.name, warning=warning)
            payload.logs.append(f"warning: {warning}")
        return payload

    async def _apply_scripts(self, feed: Feed, payload: FeedMessageCreate) -> FeedMessageCreate:
        for name in (*self._global_middleware, *feed.middleware):
            script = await self._loader.aload(name)
            result = await self._transformer.run(script, payload.to_document())
            if not isinstance(result, dict):
                raise ScriptError(name, "transform must return a table with string keys")
            payload = FeedMessageCreate.from_document(result, base=payload)
            payload.logs.append(f"script: {name}")
            log.debug("script_applied", feed_id=feed.id, script=name)
        return payload
