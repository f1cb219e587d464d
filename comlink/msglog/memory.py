"""In-process MessageLog backed by a list. Not durable."""

from __future__ import annotations

import threading
from collections.abc import Iterator

from comlink.envelope import ConversationID, Envelope
from comlink.msglog.base import (
    END_OF_LOG,
    ClosedError,
    CorruptError,
    Entry,
    MessageLog,
    NotFoundError,
)

_UINT64_MAX = (1 << 64) - 1


class MemoryLog(MessageLog):
    """A MessageLog that keeps everything in memory; useful for tests."""

    def __init__(self, conversation_id: ConversationID) -> None:
        self._conversation_id = conversation_id
        self._lock = threading.Lock()
        self._entries: list[Entry] = []
        self._first = 0
        self._index: dict[tuple[bytes, int], int] = {}
        self._closed = False

    def conversation_id(self) -> ConversationID:
        """Return the bound conversation ID."""
        return self._conversation_id

    def append(self, envelope: Envelope, sender_seq: int) -> int:
        """Store envelope and return its offset."""
        if envelope is None or envelope.id is None or envelope.id.sender is None:
            raise CorruptError("envelope has no sender")
        if not 0 <= sender_seq <= _UINT64_MAX:
            raise ValueError(f"sender sequence out of range: {sender_seq}")
        with self._lock:
            if self._closed:
                raise ClosedError("log closed")
            offset = self._first + len(self._entries)
            self._entries.append(Entry(offset=offset, envelope=envelope))
            self._index[(envelope.id.sender.value, sender_seq)] = offset
            return offset

    def lookup_by_sender(self, sender_replica: bytes, sender_seq: int) -> Entry:
        """Return the entry for (sender_replica, sender_seq)."""
        with self._lock:
            if self._closed:
                raise ClosedError("log closed")
            offset = self._index.get((bytes(sender_replica), sender_seq))
            if offset is None or offset < self._first:
                raise NotFoundError("entry not found")
            return self._entries[offset - self._first]

    def range(self, start: int = 0, stop: int = END_OF_LOG) -> Iterator[Entry]:
        """Yield entries in [start, stop), snapshotted when iteration starts."""
        with self._lock:
            if self._closed:
                raise ClosedError("log closed")
            first = self._first
            low = max(start, first)
            high = min(stop, first + len(self._entries))
            snapshot = self._entries[low - first : high - first] if low < high else []
        yield from snapshot

    def first_offset(self) -> int:
        """Return the lowest readable offset."""
        with self._lock:
            return self._first

    def next_offset(self) -> int:
        """Return the offset the next append will use."""
        with self._lock:
            return self._first + len(self._entries)

    def truncate(self, below_offset: int) -> None:
        """Drop entries with offset below below_offset."""
        with self._lock:
            if self._closed:
                raise ClosedError("log closed")
            if below_offset <= self._first:
                return
            below_offset = min(below_offset, self._first + len(self._entries))
            drop = below_offset - self._first
            self._index = {
                key: offset for key, offset in self._index.items() if offset >= below_offset
            }
            del self._entries[:drop]
            self._first = below_offset

    def close(self) -> None:
        """Release the log; later operations raise ClosedError."""
        with self._lock:
            self._closed = True
            self._entries = []
            self._index = {}