"""Lua transform engine for feed middleware scripts."""
