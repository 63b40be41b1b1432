"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

REDACTED = "***REDACTED***"

# key=value / key: value pairs and bearer credentials inside free text
_SECRET_ASSIGNMENT = re.compile(
    r"(token|api[_-]?key|secret|password|authorization)([\"']?\s*[:=]\s*[\"']?)[\w\-\.]+",
    re.IGNORECASE,
)
_BEARER = re.compile(r"(Bearer|Basic)\s+[\w\-\.=+/]+", re.IGNORECASE)

# Header and query parameter names whose values never reach the log output
_SENSITIVE_KEYS = frozenset({
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "api-key",
    "apikey",
    "api_key",
    "token",
    "secret",
    "password",
})

# Libraries whose INFO output repeats our own request events
_QUIET_LOGGERS = ("aiohttp.access", "aiohttp.server", "aiosqlite")


def _redact_text(value: str) -> str:
    value = _SECRET_ASSIGNMENT.sub(rf"\1\2{REDACTED}", value)
    return _BEARER.sub(rf"\1 {REDACTED}", value)


def _redact_mapping(value: dict[Any, Any]) -> dict[Any, Any]:
    return {
        k: REDACTED if str(k).lower() in _SENSITIVE_KEYS else v
        for k, v in value.items()
    }


def _filter_sensitive(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in list(event_dict.items()):
        if isinstance(value, dict):
            event_dict[key] = _redact_mapping(value)
        elif isinstance(value, str) and key != "event":
            event_dict[key] = _redact_text(value)
    return event_dict


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog with optional JSON output.

    Everything is routed through the stdlib root logger so aiohttp and
    aiosqlite records share the same renderer as our own events.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if numeric_level <= logging.DEBUG:
        print(
            "WARNING: DEBUG logging is enabled. Webhook payloads may appear "
            "in logs. Do not use in production.",
            file=sys.stderr,
        )

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _filter_sensitive,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_output),
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def bind_request_context(**values: Any) -> None:
    """Attach per-request fields (request id, route key) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
