"""Staged feed execution engine with tracked, persisted run history."""

__version__ = "0.1.0"
