# comlink

Building blocks for replicated, partially ordered group conversations:

* a **message log**: the durable, append-only stream of accepted
  envelopes that a replica writes through before delivering them, and
  reads back after a restart;
* **ordering policies** that take a causally ordered stream of
  deliveries and decide the sequence in which the application applies
  them.

The package uses only the standard library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Envelopes

`comlink.envelope` defines the records that flow through the system, all
frozen dataclasses:

* `ReplicaID(value)` and `ConversationID(value)`, each wrapping bytes;
* `MessageID(conversation_id, sender, vector_clock)`, where the vector
  clock is a tuple of unsigned 64-bit integers (anything out of range
  raises `ValueError`);
* `Envelope(id, payload)`, a message ID plus an opaque byte payload.

`encode_envelope` / `decode_envelope` and `encode_conversation_id` /
`decode_conversation_id` convert them to and from a compact binary form
laid out like protocol-buffer messages (varint tags, length-prefixed
fields, packed vector clock, unknown fields skipped). The decoders raise
`ValueError` on malformed input. The file-backed log stores envelopes in
this form.

## Message logs

Every log implements `comlink.msglog.base.MessageLog`:

| method | meaning |
| --- | --- |
| `conversation_id()` | the conversation the log is bound to |
| `append(envelope, sender_seq)` | store an envelope, return its offset |
| `lookup_by_sender(sender_replica, sender_seq)` | the `Entry` that sender (raw replica bytes) produced with that sequence number |
| `range(start=0, stop=END_OF_LOG)` | iterate entries with `start <= offset < stop`, as they stood when iteration began |
| `first_offset()` / `next_offset()` | lowest readable offset / offset of the next append |
| `truncate(below_offset)` | forget everything below an offset; idempotent, never moves backwards |
| `close()` | release the log; logs are also context managers |

`END_OF_LOG` (also in `comlink.msglog.base`) reads to the tail. Offsets
are stable: the entry at offset *k* stays at offset *k* after a
truncation, which only raises `first_offset()`. An `Entry` holds
`offset` and `envelope`; both it and the envelope are immutable, so
nothing handed out can change what is stored.

Failures are raised as subclasses of `comlink.msglog.base.LogError`:

* `NotFoundError`: a lookup with no entry, or one that was truncated;
* `ClosedError`: any operation on a closed log;
* `CorruptError`: an appended envelope without a sender, or on-disk data
  that fails its checks;
* `ConversationMismatchError`: the directory already holds a log for a
  different conversation.

Two implementations are provided:

* `comlink.msglog.memory.MemoryLog(conversation_id)`: an in-process
  log, handy in tests.
* `comlink.msglog.file.FileLog`, usually opened with
  `open_file(directory, conversation_id)`: a log kept in `log.data`
  inside the directory (created if missing), with an fsync after every
  append. All reads are served from memory; the file is scanned once
  when the log is opened. Each frame carries a CRC-32C checksum; a
  half-written trailing frame, as left by a crash, is cut off when the
  log is reopened, while a checksum mismatch raises `CorruptError`. The
  truncation point is kept in `log.meta`, written atomically, so it
  survives restarts.

```python
from comlink.envelope import ConversationID, Envelope, MessageID, ReplicaID
from comlink.msglog.file import open_file

conversation_id = ConversationID(b"conversation-1")
alice = ReplicaID(b"alice")
envelope = Envelope(
    id=MessageID(conversation_id=conversation_id, sender=alice, vector_clock=(1,)),
    payload=b"hello",
)

with open_file("state/conversation-1", conversation_id) as log:
    offset = log.append(envelope, sender_seq=1)
    entry = log.lookup_by_sender(alice.value, 1)
    for entry in log.range(0, log.next_offset()):
        print(entry.offset, entry.envelope.payload)
    log.truncate(offset)
```

## Ordering policies

Each policy is a `comlink.order.base.Order`, constructed with a
conversation object. Feed it `Delivery(envelope)` records in causal
order with `process(delivery)`; `applied()` yields, and removes, the
`Applied` records that have become ready, in order (each exposes
`envelope` and the `node` of its delivery). `close()` stops any further
applying; records already queued can still be read. Closing an order
does not touch the conversation.

* `comlink.order.partial.PartialOrder`: applies every delivery at once,
  in arrival order. It makes no calls on the conversation.
* `comlink.order.total.TotalOrder`: every replica applies the same
  sequence. Starting at wave 1, while `conversation.wave_complete(wave)`
  is true it applies `conversation.messages_in_wave(wave)` sorted by
  sender replica bytes, then moves on to the next wave.
* `comlink.order.semorder.SemOrder(conversation, classifier)`: semantic
  ordering. The classifier is a callable (or an object with a
  `class_of` method) mapping a payload to a class number; without one,
  everything is class 1. Class 1 operations are applied as soon as all
  their causal predecessors have been. Operations of class 2 and above
  are applied wave by wave, sorted by sender, once the wave has a stable
  message and every active replica has been seen at that wave or later,
  so their relative order is the same everywhere. It keeps its own
  per-wave and latest-clock bookkeeping and needs from the conversation
  only `membership()`, returning an object that supports `len()`,
  `slot_of(replica)`, `sender_seq(message_id)`, `is_frozen(slot)`,
  `replica(slot)` and `replicas()`.

`wave_of(vector)` (largest clock component, 0 for an empty clock) and
`dominates_or_equal(a, b)` (component-wise `>=`, false for clocks of
different length) are available from `comlink.order.semorder`.

A directory service, for instance, can treat deletes as class 1 and
inserts and updates as class 2:

```python
from comlink.order.semorder import SemOrder

def directory_class(payload: bytes) -> int:
    return 2 if payload.startswith((b"insert:", b"update:")) else 1

order = SemOrder(conversation, directory_class)
order.process(delivery)
for applied in order.applied():
    handle(applied.envelope.payload)
```

## What the package does not do

* It has no conversation of its own: it does not send or receive
  messages, build the causal graph, decide wave completion, or track
  membership. The ordering policies call on a conversation object you
  supply, with the methods listed above.
* There is no network transport, failure detection, or voting on group
  membership.
* `FileLog.truncate` only moves the first readable offset; the data file
  keeps its frames and does not shrink.