"""Quota-gated command bot with browser-assisted record lookup."""
