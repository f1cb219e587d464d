"""Message envelopes, append-only message logs and ordering policies for replicated conversations."""

__version__ = "0.1.0"

__all__ = ["envelope", "msglog", "order"]