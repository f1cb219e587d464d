"""Message identifiers and envelopes, with a compact binary wire form.

The wire form follows protocol-buffer conventions: every field is a
varint tag (``field_number << 3 | wire_type``) followed by its value.
Length-delimited values carry a varint length prefix. Unknown fields are
skipped on decode.

Field numbers:

* ``ConversationID`` / ``ReplicaID``: 1 = value (bytes)
* ``MessageID``: 1 = conversation_id, 2 = sender, 3 = vector_clock
  (packed uint64)
* ``Envelope``: 1 = id, 2 = payload (bytes)
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

_UINT64_MAX = (1 << 64) - 1

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5


@dataclass(frozen=True)
class ReplicaID:
    """Identifier of one replica taking part in a conversation."""

    value: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", bytes(self.value))


@dataclass(frozen=True)
class ConversationID:
    """Identifier of one conversation."""

    value: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", bytes(self.value))


@dataclass(frozen=True)
class MessageID:
    """Identity of a message: conversation, sender and vector clock."""

    conversation_id: ConversationID | None = None
    sender: ReplicaID | None = None
    vector_clock: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        clock = tuple(int(x) for x in self.vector_clock)
        for component in clock:
            if not 0 <= component <= _UINT64_MAX:
                raise ValueError(f"vector clock component out of range: {component}")
        object.__setattr__(self, "vector_clock", clock)


@dataclass(frozen=True)
class Envelope:
    """A message as sent, stored and delivered."""

    id: MessageID | None = None
    payload: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", bytes(self.payload))


# ─── low-level wire helpers ───────────────────────────────────────


def _put_varint(out: bytearray, value: int) -> None:
    if not 0 <= value <= _UINT64_MAX:
        raise ValueError(f"varint out of range: {value}")
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)


def _put_tag(out: bytearray, number: int, wire_type: int) -> None:
    _put_varint(out, (number << 3) | wire_type)


def _put_bytes_field(out: bytearray, number: int, data: bytes) -> None:
    _put_tag(out, number, _WIRE_BYTES)
    _put_varint(out, len(data))
    out += data


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
        if shift >= 70:
            raise ValueError("varint too long")
    if result > _UINT64_MAX:
        raise ValueError("varint overflows 64 bits")
    return result, pos


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise ValueError("truncated field")
    return bytes(data[pos:end]), end


def _iter_fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    """Yield ``(field_number, wire_type, value)`` for each field in data."""
    data = bytes(data)
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        number, wire_type = tag >> 3, tag & 0x7
        if number == 0:
            raise ValueError("invalid field number 0")
        value: int | bytes
        if wire_type == _WIRE_VARINT:
            value, pos = _read_varint(data, pos)
        elif wire_type == _WIRE_BYTES:
            length, pos = _read_varint(data, pos)
            value, pos = _take(data, pos, length)
        elif wire_type == _WIRE_FIXED64:
            value, pos = _take(data, pos, 8)
        elif wire_type == _WIRE_FIXED32:
            value, pos = _take(data, pos, 4)
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        yield number, wire_type, value


def _expect_bytes(wire_type: int, value: int | bytes, what: str) -> bytes:
    if wire_type != _WIRE_BYTES or not isinstance(value, bytes):
        raise ValueError(f"{what}: wrong wire type {wire_type}")
    return value


# ─── message codecs ───────────────────────────────────────────────


def _encode_value_message(value: bytes) -> bytes:
    out = bytearray()
    if value:
        _put_bytes_field(out, 1, value)
    return bytes(out)


def _decode_value_message(data: bytes, what: str) -> bytes:
    value = b""
    for number, wire_type, raw in _iter_fields(data):
        if number == 1:
            value = _expect_bytes(wire_type, raw, what)
    return value


def _encode_message_id(message_id: MessageID) -> bytes:
    out = bytearray()
    if message_id.conversation_id is not None:
        _put_bytes_field(out, 1, _encode_value_message(message_id.conversation_id.value))
    if message_id.sender is not None:
        _put_bytes_field(out, 2, _encode_value_message(message_id.sender.value))
    if message_id.vector_clock:
        packed = bytearray()
        for component in message_id.vector_clock:
            _put_varint(packed, component)
        _put_bytes_field(out, 3, bytes(packed))
    return bytes(out)


def _decode_packed_varints(data: bytes) -> list[int]:
    values = []
    pos = 0
    while pos < len(data):
        value, pos = _read_varint(data, pos)
        values.append(value)
    return values


def _decode_message_id(data: bytes) -> MessageID:
    conversation_id: ConversationID | None = None
    sender: ReplicaID | None = None
    clock: list[int] = []
    for number, wire_type, raw in _iter_fields(data):
        if number == 1:
            body = _expect_bytes(wire_type, raw, "conversation_id")
            conversation_id = ConversationID(_decode_value_message(body, "conversation_id"))
        elif number == 2:
            body = _expect_bytes(wire_type, raw, "sender")
            sender = ReplicaID(_decode_value_message(body, "sender"))
        elif number == 3:
            if wire_type == _WIRE_BYTES and isinstance(raw, bytes):
                clock.extend(_decode_packed_varints(raw))
            elif wire_type == _WIRE_VARINT and isinstance(raw, int):
                clock.append(raw)
            else:
                raise ValueError(f"vector_clock: wrong wire type {wire_type}")
    return MessageID(conversation_id=conversation_id, sender=sender, vector_clock=tuple(clock))


def encode_envelope(envelope: Envelope) -> bytes:
    """Return the wire form of envelope."""
    out = bytearray()
    if envelope.id is not None:
        _put_bytes_field(out, 1, _encode_message_id(envelope.id))
    if envelope.payload:
        _put_bytes_field(out, 2, envelope.payload)
    return bytes(out)


def decode_envelope(data: bytes) -> Envelope:
    """Parse an envelope from its wire form; raises ValueError if malformed."""
    message_id: MessageID | None = None
    payload = b""
    for number, wire_type, raw in _iter_fields(data):
        if number == 1:
            message_id = _decode_message_id(_expect_bytes(wire_type, raw, "id"))
        elif number == 2:
            payload = _expect_bytes(wire_type, raw, "payload")
    return Envelope(id=message_id, payload=payload)


def encode_conversation_id(conversation_id: ConversationID) -> bytes:
    """Return the wire form of conversation_id."""
    return _encode_value_message(conversation_id.value)


def decode_conversation_id(data: bytes) -> ConversationID:
    """Parse a conversation ID from its wire form; raises ValueError if malformed."""
    return ConversationID(_decode_value_message(data, "conversation_id"))