"""Ordering policies: passthrough, total and semantic ordering of causally ordered deliveries."""

__all__ = ["base", "partial", "total", "semorder"]