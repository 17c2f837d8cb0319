"""Discord formatting helpers."""
