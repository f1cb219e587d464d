"""The MessageLog contract: a durable, ordered, append-only message stream.

Offsets are sequential and stable: entry K is always at offset K, even
after a truncate has dropped earlier entries. The log indexes entries by
``(sender replica bytes, sender sequence)`` because that is the natural
lookup key for recovering lost messages; callers pass the sender
sequence explicitly since the log cannot derive it from the vector clock
without knowing the membership slot order.
"""

from __future__ import annotations

import abc
from collections.abc import Iterator
from dataclasses import dataclass

from comlink.envelope import ConversationID, Envelope

END_OF_LOG = (1 << 64) - 1
"""Upper bound for ``range`` meaning "to the tail when iteration starts"."""


class LogError(Exception):
    """Base class for message-log errors."""


class NotFoundError(LogError):
    """The log has no entry for the given lookup."""


class ConversationMismatchError(LogError):
    """The stored log belongs to a different conversation."""


class ClosedError(LogError):
    """The log was closed."""


class CorruptError(LogError):
    """The log, or an envelope handed to it, failed integrity checks."""


@dataclass(frozen=True)
class Entry:
    """A single record in the log."""

    offset: int
    envelope: Envelope


class MessageLog(abc.ABC):
    """Durable, ordered, append-only message stream; safe for concurrent use."""

    @abc.abstractmethod
    def conversation_id(self) -> ConversationID:
        """Return the conversation this log is bound to."""

    @abc.abstractmethod
    def append(self, envelope: Envelope, sender_seq: int) -> int:
        """Store envelope and return its offset.

        sender_seq must equal the envelope's vector clock at the sender's
        slot; ``(envelope.id.sender, sender_seq)`` is indexed for lookup.
        """

    @abc.abstractmethod
    def lookup_by_sender(self, sender_replica: bytes, sender_seq: int) -> Entry:
        """Return the entry sent by sender_replica with sender_seq.

        Raises NotFoundError if there is none.
        """

    @abc.abstractmethod
    def range(self, start: int = 0, stop: int = END_OF_LOG) -> Iterator[Entry]:
        """Yield entries with ``start <= offset < stop`` in offset order."""

    @abc.abstractmethod
    def first_offset(self) -> int:
        """Return the lowest readable offset (0 until a truncate)."""

    @abc.abstractmethod
    def next_offset(self) -> int:
        """Return the offset the next append will be assigned."""

    @abc.abstractmethod
    def truncate(self, below_offset: int) -> None:
        """Drop every entry with offset below below_offset. Idempotent."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release resources."""

    def __enter__(self) -> MessageLog:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()