"""Owner-only commands."""
