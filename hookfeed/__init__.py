"""HookFeed - webhook inbox with feed routing, adapters and Lua transforms."""

__version__ = "0.1.0"
