"""Record lookup commands."""
