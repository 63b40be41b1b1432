"""HTTP surface using aiohttp: webhook ingress plus the message triage API."""

from __future__ import annotations

from typing import Any, Awaitable, Callable
from uuid import uuid4

from aiohttp import web

from hookfeed.adapters import InboundRequest, NtfyAdapter
from hookfeed.config import ServerConfig
from hookfeed.core.feeds import FeedCache
from hookfeed.errors import HookfeedError, MessageNotFoundError, ValidationError
from hookfeed.models import (
    DeleteFilter,
    MessageQuery,
    MessageState,
    clamp_priority,
    parse_time,
)
from hookfeed.services.webhooks import WebhookService
from hookfeed.store.messages import MessageStore
from hookfeed.utils.logging import bind_request_context, clear_request_context, get_logger

log = get_logger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    bind_request_context(request_id=uuid4().hex[:12], method=request.method, path=request.path)
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except HookfeedError as exc:
        log.warning("request_failed", status=exc.status, error=str(exc))
        return web.json_response({"error": str(exc)}, status=exc.status)
    except Exception:
        log.exception("request_error")
        return web.json_response({"error": "internal server error"}, status=500)
    finally:
        clear_request_context()


class WebServer:
    """Serves webhook ingress and message triage over one aiohttp app."""

    def __init__(
        self,
        config: ServerConfig,
        service: WebhookService,
        store: MessageStore,
        cache: FeedCache,
    ) -> None:
        self._config = config
        self._service = service
        self._store = store
        self._cache = cache
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        app = self._build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info("web_server_started", bind=self._config.bind, port=self._config.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        log.info("web_server_stopped")

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def _build_app(self) -> web.Application:
        app = web.Application(
            middlewares=[error_middleware],
            client_max_size=self._config.max_body_size,
        )
        app.router.add_post("/hooks/{key}", self._handle_hook)
        app.router.add_get("/v1/feeds", self._list_feeds)
        app.router.add_get("/v1/feed-messages", self._search_messages)
        app.router.add_patch("/v1/feed-messages/state", self._bulk_update_state)
        app.router.add_post("/v1/feed-messages/bulk-delete", self._bulk_delete)
        app.router.add_get("/v1/feed-messages/{id}", self._get_message)
        app.router.add_delete("/v1/feed-messages/{id}", self._delete_message)
        app.router.add_patch("/v1/feed-messages/{id}/state", self._update_state)
        # Single-segment catch-all stays last so it never shadows the API
        app.router.add_post("/{topic}", self._handle_ntfy)
        app.router.add_put("/{topic}", self._handle_ntfy)
        return app

    # ------------------------------------------------------------------
    # Ingress
    # ------------------------------------------------------------------

    async def _handle_hook(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        inbound = await InboundRequest.from_web(request, key)
        result = await self._service.process_webhook(key, inbound)
        return web.json_response(result.to_dict(), status=202)

    async def _handle_ntfy(self, request: web.Request) -> web.Response:
        topic = request.match_info["topic"]
        inbound = await InboundRequest.from_web(request, topic)
        message = await self._service.ingest(topic, inbound, adapter_name=NtfyAdapter.name)
        return web.json_response(message.to_dict())

    # ------------------------------------------------------------------
    # Feeds and messages
    # ------------------------------------------------------------------

    async def _list_feeds(self, request: web.Request) -> web.Response:
        return web.json_response([feed.to_dict() for feed in self._cache.all()])

    async def _search_messages(self, request: web.Request) -> web.Response:
        query = MessageQuery.from_params(request.query)
        page = await self._store.search(query)
        return web.json_response(page.to_dict())

    async def _get_message(self, request: web.Request) -> web.Response:
        message_id = request.match_info["id"]
        message = await self._store.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return web.json_response(message.to_dict())

    async def _update_state(self, request: web.Request) -> web.Response:
        body = await _json_object(request)
        state = MessageState.parse(body.get("state"))
        message = await self._store.update_state(request.match_info["id"], state)
        return web.json_response(message.to_dict())

    async def _bulk_update_state(self, request: web.Request) -> web.Response:
        body = await _json_object(request)
        ids = _id_list(body.get("messageIds"))
        state = MessageState.parse(body.get("state"))
        await self._store.bulk_update_state(ids, state)
        return web.json_response({"success": True, "updated": len(ids)})

    async def _delete_message(self, request: web.Request) -> web.Response:
        await self._store.delete(request.match_info["id"])
        return web.Response(status=204)

    async def _bulk_delete(self, request: web.Request) -> web.Response:
        body = await _json_object(request)
        if body.get("messageIds") is not None:
            deleted = await self._store.bulk_delete(message_ids=_id_list(body["messageIds"]))
        else:
            deleted = await self._store.bulk_delete(filter=_delete_filter(body.get("filter")))
        return web.json_response({"success": True, "deleted": deleted})


# ----------------------------------------------------------------------
# Request body helpers
# ----------------------------------------------------------------------

async def _json_object(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body


def _id_list(value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValidationError("messageIds must be a list of message id strings")
    if not value:
        raise ValidationError("messageIds must not be empty")
    return value


def _delete_filter(value: Any) -> DeleteFilter:
    if value is None:
        return DeleteFilter()
    if not isinstance(value, dict):
        raise ValidationError("filter must be a JSON object")

    result = DeleteFilter()
    priority = value.get("priority")
    if priority is not None:
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError("filter.priority must be an integer")
        result.priority = clamp_priority(priority)
    older_than = value.get("olderThan")
    if older_than is not None:
        result.older_than = parse_time(older_than)
        if result.older_than is None:
            raise ValidationError("filter.olderThan must be an ISO 8601 timestamp")
    return result
