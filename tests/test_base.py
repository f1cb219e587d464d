import dataclasses

import pytest

from comlink.envelope import ConversationID, Envelope
from comlink.msglog.base import (
    ClosedError,
    ConversationMismatchError,
    CorruptError,
    Entry,
    LogError,
    MessageLog,
    NotFoundError,
)


class _RecordingLog(MessageLog):
    def __init__(self):
        self.closed_count = 0

    def conversation_id(self):
        return ConversationID(b"c")

    def append(self, envelope, sender_seq):
        raise ClosedError("closed")

    def lookup_by_sender(self, sender_replica, sender_seq):
        raise NotFoundError("missing")

    def range(self, start=0, stop=None):
        return iter(())

    def first_offset(self):
        return 0

    def next_offset(self):
        return 0

    def truncate(self, below_offset):
        return None

    def close(self):
        self.closed_count += 1


def test_message_log_is_abstract():
    with pytest.raises(TypeError):
        MessageLog()


def test_context_manager_returns_log_and_closes():
    log = _RecordingLog()
    entered = MessageLog.__enter__(log)
    assert entered is log
    assert log.closed_count == 0
    MessageLog.__exit__(log, None, None, None)
    assert log.closed_count == 1


def test_context_manager_closes_and_propagates_on_error():
    log = _RecordingLog()
    MessageLog.__enter__(log)
    error = RuntimeError("boom")
    suppressed = MessageLog.__exit__(log, RuntimeError, error, None)
    assert not suppressed
    assert log.closed_count == 1


@pytest.mark.parametrize(
    "exc_type", [NotFoundError, ConversationMismatchError, ClosedError, CorruptError]
)
def test_errors_share_base_class(exc_type):
    err = exc_type("x")
    assert isinstance(err, LogError)
    assert str(err) == "x"


def test_errors_are_distinct():
    err = NotFoundError("missing")
    assert str(err) == "missing"
    assert isinstance(err, LogError)
    assert not isinstance(err, ClosedError)
    assert not isinstance(ClosedError("closed"), NotFoundError)


def test_entry_equality_and_immutability():
    env = Envelope(payload=b"p")
    entry = Entry(offset=2, envelope=env)
    assert entry == Entry(offset=2, envelope=Envelope(payload=b"p"))
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.offset = 3
    assert entry.offset == 2