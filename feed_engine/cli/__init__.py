"""Command-line interface for feed-engine."""
