"""Core feed configuration, event bus and retention."""
