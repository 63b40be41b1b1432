"""HookFeed entry point: wires the pipeline together and exposes the CLI."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

import click

from hookfeed import __version__
from hookfeed.config import Settings, load_settings
from hookfeed.core.bus import EventBus
from hookfeed.core.feeds import FeedCache, FeedsFile, load_feeds
from hookfeed.core.retention import RetentionManager
from hookfeed.errors import HookfeedError
from hookfeed.services.webhooks import WebhookService
from hookfeed.store.messages import MessageStore
from hookfeed.transform.engine import ScriptLoader, Transformer, load_script
from hookfeed.utils.logging import get_logger, setup_logging
from hookfeed.web.server import WebServer

log = get_logger(__name__)

# Input for `hookfeed validate` when no --input file is given
SAMPLE_DOCUMENT: dict[str, Any] = {
    "feedId": "example",
    "rawRequest": {"event": "deploy", "status": "ok", "service": "api"},
    "rawHeaders": {"Content-Type": "application/json"},
    "rawQueryParams": {},
    "title": "Deploy finished",
    "message": "api deployed",
    "priority": 3,
    "tags": ["deploy"],
    "logs": [],
    "metadata": {},
    "state": "new",
}


class HookFeed:
    """Main application orchestrator."""

    def __init__(self, settings: Settings, feeds: FeedsFile) -> None:
        self.settings = settings

        self.bus = EventBus()
        self.cache = FeedCache(feeds.feeds)
        self.store = MessageStore(settings.get_data_dir() / "hookfeed.db")
        self.transformer = Transformer(settings.transform.max_instructions)
        self.loader = ScriptLoader(settings.get_middleware_dir())
        self.service = WebhookService(
            self.cache,
            self.store,
            self.transformer,
            self.loader,
            global_middleware=feeds.middleware,
            bus=self.bus,
        )
        self.retention = RetentionManager(settings.retention, self.cache, self.store, self.bus)
        self.server = WebServer(settings.server, self.service, self.store, self.cache)

    async def start(self) -> None:
        log.info("hookfeed_starting", version=__version__, feeds=len(self.cache))

        await self.store.start()

        if self.settings.retention.enabled:
            self.retention.register()
            await self.retention.start()

        await self.bus.start()
        await self.server.start()

        log.info("hookfeed_ready")

    async def stop(self) -> None:
        log.info("hookfeed_stopping")
        await self.server.stop()
        await self.bus.stop()
        await self.retention.stop()
        await self.store.stop()
        log.info("hookfeed_stopped")


async def run(settings: Settings, feeds: FeedsFile) -> None:
    app = HookFeed(settings, feeds)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------

@click.group()
@click.version_option(__version__, prog_name="hookfeed")
def cli() -> None:
    """Ingest webhooks into feeds, transformed by Lua scripts."""


@cli.command()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--feeds", "feeds_path", default=None, help="Path to the feeds YAML file")
@click.option("--middleware-dir", default=None, help="Directory holding transform scripts")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
def serve(
    config_path: str | None,
    feeds_path: str | None,
    middleware_dir: str | None,
    log_level: str | None,
) -> None:
    """Start the webhook server."""
    try:
        settings = load_settings(config_path)
    except HookfeedError as exc:
        raise click.ClickException(str(exc)) from exc
    if feeds_path:
        settings.feeds_file = feeds_path
    if middleware_dir:
        settings.transform.middleware_dir = middleware_dir
    if log_level:
        settings.log_level = log_level
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    try:
        feeds = load_feeds(settings.get_feeds_file())
    except HookfeedError as exc:
        raise click.ClickException(str(exc)) from exc
    asyncio.run(run(settings, feeds))


@cli.command()
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--input",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON document to transform (defaults to a sample webhook message)",
)
@click.option("--max-instructions", type=int, default=None, help="Instruction budget for the script")
def validate(script: Path, input_path: Path | None, max_instructions: int | None) -> None:
    """Run a transform SCRIPT once and print its input and output."""
    if input_path is None:
        document: Any = SAMPLE_DOCUMENT
    else:
        try:
            document = json.loads(input_path.read_text())
        except ValueError as exc:
            raise click.ClickException(f"{input_path} is not valid JSON: {exc}") from exc

    transformer = Transformer(max_instructions) if max_instructions else Transformer()
    try:
        output = transformer.transform(load_script(script), document)
    except HookfeedError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo("input:")
    click.echo(json.dumps(document, indent=2))
    click.echo("output:")
    click.echo(json.dumps(output, indent=2))


@cli.command()
@click.argument("feeds_file", type=click.Path(dir_okay=False, path_type=Path))
def check(feeds_file: Path) -> None:
    """Validate a FEEDS_FILE and list the feeds it defines."""
    try:
        feeds = load_feeds(feeds_file)
    except HookfeedError as exc:
        raise click.ClickException(str(exc)) from exc

    if feeds.middleware:
        click.echo(f"global middleware: {', '.join(feeds.middleware)}")
    for feed in feeds.feeds:
        click.echo(f"{feed.id}: {feed.name} (keys: {', '.join(feed.keys)})")
    click.echo(f"{len(feeds.feeds)} feed(s) OK")


if __name__ == "__main__":
    cli()
