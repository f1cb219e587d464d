"""Append-only message logs: the common interface, an in-memory log and a file-backed log."""

__all__ = ["base", "memory", "file"]