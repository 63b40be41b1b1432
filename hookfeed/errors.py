"""Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status the web server responds with, so the
server can translate any ``HookfeedError`` without knowing the concrete type.
"""

from __future__ import annotations


class HookfeedError(Exception):
    status = 500


class ConfigError(HookfeedError):
    """The feed configuration document is missing or invalid."""


class FeedNotFoundError(HookfeedError):
    status = 404

    def __init__(self, key: str) -> None:
        super().__init__(f"feed not found: {key}")
        self.key = key


class AdapterParseError(HookfeedError):
    status = 400

    def __init__(self, adapter: str, reason: str) -> None:
        super().__init__(f"{adapter} adapter: {reason}")
        self.adapter = adapter
        self.reason = reason


class ScriptError(HookfeedError):
    """A transform script could not be loaded, had no transform function, or raised."""

    status = 502

    def __init__(self, script: str, reason: str) -> None:
        super().__init__(f"script {script}: {reason}")
        self.script = script
        self.reason = reason


class StoreError(HookfeedError):
    pass


class MessageNotFoundError(StoreError):
    status = 404

    def __init__(self, message_id: str) -> None:
        super().__init__(f"message not found: {message_id}")
        self.message_id = message_id


class ValidationError(HookfeedError):
    status = 400
