"""Message persistence."""
