"""Single-file MessageLog with an fsync on every append.

An in-memory cache (entries plus index) answers every read; the data
file is the durable write-ahead backing. Appends write through to the
file and fsync before updating the cache. The file is scanned once, when
the log is opened, to rebuild the cache.

On-disk format (all integers little-endian)::

    header := magic (8) | conv_id_len (uint32) | conv_id_bytes
    frame  := payload_len (uint32) | sender_seq (uint64) | crc32c (uint32) | payload
    file   := header | frame*

Each frame holds one envelope in wire form; the CRC (Castagnoli) covers
the payload. A frame's logical offset is its zero-based position after
the header, so offsets stay stable across truncation. A sidecar meta
file records the first readable offset; frames below it stay on disk
but are left out of the cache.
"""

from __future__ import annotations

import os
import struct
import tempfile
import threading
from collections.abc import Iterator
from typing import BinaryIO

from comlink.envelope import (
    ConversationID,
    Envelope,
    decode_conversation_id,
    decode_envelope,
    encode_conversation_id,
    encode_envelope,
)
from comlink.msglog.base import (
    END_OF_LOG,
    ClosedError,
    ConversationMismatchError,
    CorruptError,
    Entry,
    MessageLog,
    NotFoundError,
)

DATA_FILE_NAME = "log.data"
META_FILE_NAME = "log.meta"

_MAGIC = b"comlink\x01"
_FRAME_HEADER = struct.Struct("<IQI")
_META = struct.Struct("<Q")
_CONV_LEN = struct.Struct("<I")
_UINT64_MAX = (1 << 64) - 1


def _make_crc32c_table() -> tuple[int, ...]:
    poly = 0x82F63B78
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_CRC32C_TABLE = _make_crc32c_table()


def _crc32c(data: bytes) -> int:
    """Return the CRC-32C (Castagnoli) checksum of data."""
    crc = 0xFFFFFFFF
    table = _CRC32C_TABLE
    for byte in data:
        crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def _read_exact(handle: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, stopping early only at end of file."""
    chunks = bytearray()
    while len(chunks) < size:
        chunk = handle.read(size - len(chunks))
        if not chunk:
            break
        chunks += chunk
    return bytes(chunks)


def _sender_bytes(envelope: Envelope) -> bytes:
    if envelope.id is None or envelope.id.sender is None:
        return b""
    return envelope.id.sender.value


class FileLog(MessageLog):
    """A durable MessageLog kept in one data file plus a small meta file."""

    def __init__(self, directory: str | os.PathLike[str], conversation_id: ConversationID) -> None:
        if conversation_id is None:
            raise ValueError("nil conversation id")
        self._dir = os.fspath(directory)
        os.makedirs(self._dir, mode=0o755, exist_ok=True)
        self._data_path = os.path.join(self._dir, DATA_FILE_NAME)
        self._meta_path = os.path.join(self._dir, META_FILE_NAME)
        self._conversation_id = conversation_id
        self._lock = threading.Lock()
        self._entries: list[Entry] = []
        self._first = 0
        self._index: dict[tuple[bytes, int], int] = {}
        self._closed = False
        self._file: BinaryIO | None = None
        self._open_or_create()

    # ─── opening ──────────────────────────────────────────────────

    def _open_or_create(self) -> None:
        try:
            with open(self._meta_path, "rb") as meta:
                data = meta.read()
        except FileNotFoundError:
            pass
        else:
            if len(data) != _META.size:
                raise CorruptError(f"meta file has wrong length {len(data)}")
            (self._first,) = _META.unpack(data)

        fd = os.open(self._data_path, os.O_RDWR | os.O_CREAT, 0o644)
        handle = os.fdopen(fd, "r+b", buffering=0)
        try:
            size = os.fstat(handle.fileno()).st_size
            self._file = handle
            if size == 0:
                self._write_header()
            else:
                self._read_and_validate_header()
                self._scan_into_cache(size)
        except BaseException:
            self._file = None
            handle.close()
            raise

    def _write_header(self) -> None:
        assert self._file is not None
        conv_bytes = encode_conversation_id(self._conversation_id)
        self._file.write(_MAGIC + _CONV_LEN.pack(len(conv_bytes)) + conv_bytes)
        os.fsync(self._file.fileno())

    def _read_and_validate_header(self) -> None:
        assert self._file is not None
        self._file.seek(0)
        magic = _read_exact(self._file, len(_MAGIC))
        if len(magic) != len(_MAGIC):
            raise CorruptError("read magic: unexpected end of file")
        if magic != _MAGIC:
            raise CorruptError("bad magic")
        length_bytes = _read_exact(self._file, _CONV_LEN.size)
        if len(length_bytes) != _CONV_LEN.size:
            raise CorruptError("read conv-id length: unexpected end of file")
        (conv_len,) = _CONV_LEN.unpack(length_bytes)
        conv_bytes = _read_exact(self._file, conv_len)
        if len(conv_bytes) != conv_len:
            raise CorruptError("read conv-id: unexpected end of file")
        try:
            stored = decode_conversation_id(conv_bytes)
        except ValueError as exc:
            raise CorruptError(f"parse conv-id: {exc}") from exc
        if stored != self._conversation_id:
            raise ConversationMismatchError("log belongs to a different conversation")

    def _scan_into_cache(self, size: int) -> None:
        """Load every frame after the header; drop a trailing partial frame."""
        assert self._file is not None
        pos = self._file.tell()
        offset = 0
        while pos < size:
            remaining = size - pos
            if remaining < _FRAME_HEADER.size:
                self._drop_tail(pos)
                break
            header = _read_exact(self._file, _FRAME_HEADER.size)
            payload_len, sender_seq, want_crc = _FRAME_HEADER.unpack(header)
            if payload_len > remaining - _FRAME_HEADER.size:
                self._drop_tail(pos)
                break
            payload = _read_exact(self._file, payload_len)
            if len(payload) != payload_len:
                self._drop_tail(pos)
                break
            if _crc32c(payload) != want_crc:
                raise CorruptError(f"crc mismatch at offset {offset}")
            if offset >= self._first:
                try:
                    envelope = decode_envelope(payload)
                except ValueError as exc:
                    raise CorruptError(f"parse envelope at offset {offset}: {exc}") from exc
                self._entries.append(Entry(offset=offset, envelope=envelope))
                self._index[(_sender_bytes(envelope), sender_seq)] = offset
            pos += _FRAME_HEADER.size + payload_len
            offset += 1
        self._file.seek(pos)

    def _drop_tail(self, pos: int) -> None:
        assert self._file is not None
        self._file.truncate(pos)
        self._file.seek(pos)

    # ─── MessageLog ───────────────────────────────────────────────

    def conversation_id(self) -> ConversationID:
        """Return the bound conversation ID."""
        return self._conversation_id

    def append(self, envelope: Envelope, sender_seq: int) -> int:
        """Durably write envelope, then add it to the cache; return its offset."""
        if envelope is None or envelope.id is None or envelope.id.sender is None:
            raise CorruptError("envelope has no sender")
        if not 0 <= sender_seq <= _UINT64_MAX:
            raise ValueError(f"sender sequence out of range: {sender_seq}")
        payload = encode_envelope(envelope)
        with self._lock:
            if self._closed or self._file is None:
                raise ClosedError("log closed")
            handle = self._file
            pos = handle.seek(0, os.SEEK_END)
            frame = _FRAME_HEADER.pack(len(payload), sender_seq, _crc32c(payload)) + payload
            try:
                handle.write(frame)
                os.fsync(handle.fileno())
            except OSError:
                try:
                    handle.truncate(pos)
                except OSError:
                    pass
                raise
            offset = self._first + len(self._entries)
            self._entries.append(Entry(offset=offset, envelope=envelope))
            self._index[(envelope.id.sender.value, sender_seq)] = offset
            return offset

    def lookup_by_sender(self, sender_replica: bytes, sender_seq: int) -> Entry:
        """Return the entry for (sender_replica, sender_seq) from memory."""
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
        """Drop cached entries below below_offset and persist the new first offset.

        The data file itself is left untouched.
        """
        with self._lock:
            if self._closed:
                raise ClosedError("log closed")
            if below_offset <= self._first:
                return
            below_offset = min(below_offset, self._first + len(self._entries))
            self._write_meta(below_offset)
            drop = below_offset - self._first
            self._index = {
                key: offset for key, offset in self._index.items() if offset >= below_offset
            }
            del self._entries[:drop]
            self._first = below_offset

    def _write_meta(self, first_offset: int) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix="log.meta.tmp-")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(_META.pack(first_offset))
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self._meta_path)
        except BaseException:
            try:
                os.remove(tmp_name)
            except OSError:
                pass
            raise
        if os.name == "posix":
            dir_fd = os.open(self._dir, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)

    def close(self) -> None:
        """Release the data file and drop the cache. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._entries = []
            self._index = {}
            if self._file is not None:
                handle, self._file = self._file, None
                handle.close()


def open_file(directory: str | os.PathLike[str], conversation_id: ConversationID) -> FileLog:
    """Open, creating if needed, a file-backed log in directory bound to conversation_id.

    Raises ConversationMismatchError if the stored log was bound to a
    different conversation, and CorruptError if it fails integrity checks.
    """
    return FileLog(directory, conversation_id)