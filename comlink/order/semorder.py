"""Semantic-dependent ordering with commutativity classes.

A classifier maps each payload to a class number. Class 1 operations
commute with one another: each is applied as soon as all of its causal
predecessors have been applied, so replicas may apply concurrent class-1
operations in different orders. Operations of class 2 and above are
batched per wave. Once a wave is wave-complete and every active replica
has been seen at that wave or beyond, its class-2+ operations are sorted
by sender replica bytes and applied, so every replica applies them in
the same sequence.

The order tracks the latest vector clock seen from each replica and the
messages of each wave itself, so it makes no graph queries on the
conversation. The conversation only has to provide ``membership()``,
returning an object with:

* ``len(membership)``: number of slots;
* ``slot_of(replica) -> int``: the replica's slot, or -1;
* ``sender_seq(message_id) -> int``: the sender's own clock component,
  raising ``ValueError`` or ``LookupError`` for a non-member;
* ``is_frozen(slot) -> bool``;
* ``replica(slot) -> ReplicaID``;
* ``replicas() -> iterable of ReplicaID``: the active replicas.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from comlink.envelope import Envelope
from comlink.order.base import Delivery, Order

Classifier = Callable[[bytes], int]


def wave_of(vector: Sequence[int]) -> int:
    """Return the wave of a vector clock: its largest component, or 0."""
    return max(vector, default=0)


def dominates_or_equal(a: Sequence[int], b: Sequence[int]) -> bool:
    """Report whether a >= b component-wise; clocks of different length never do."""
    if len(a) != len(b):
        return False
    return all(x >= y for x, y in zip(a, b))


def _component(vector: Sequence[int], slot: int) -> int:
    if 0 <= slot < len(vector):
        return vector[slot]
    return 0


def _sender_bytes(envelope: Envelope) -> bytes:
    if envelope.id is None or envelope.id.sender is None:
        return b""
    return envelope.id.sender.value


def _clock(envelope: Envelope) -> tuple[int, ...]:
    if envelope.id is None:
        return ()
    return envelope.id.vector_clock


class SemOrder(Order):
    """Applies class-1 operations eagerly and class-2+ operations wave by wave."""

    def __init__(self, conversation: Any, classifier: Any = None) -> None:
        super().__init__(conversation)
        if classifier is None:
            classifier = _always_class_one
        self._classify: Classifier = getattr(classifier, "class_of", classifier)
        self._membership = conversation.membership()
        # Next wave whose class-2+ operations are still to be processed.
        self._current_wave = 1
        self._executed: set[tuple[bytes, int]] = set()
        self._messages_by_wave: dict[int, list[Envelope]] = {}
        self._seen_in_wave: dict[int, set[tuple[bytes, int]]] = {}
        self._latest_vector: dict[bytes, tuple[int, ...]] = {}

    def process(self, delivery: Delivery) -> None:
        """Record a delivery, then apply everything that has become ready."""
        with self._lock:
            if self._closed:
                return
            self._observe(delivery.envelope)
            self._try_eager_executions()
            self._advance_wave()

    # ─── bookkeeping ──────────────────────────────────────────────

    def _sender_seq(self, envelope: Envelope) -> int | None:
        if envelope.id is None or envelope.id.sender is None:
            return None
        try:
            return self._membership.sender_seq(envelope.id)
        except (ValueError, LookupError):
            return None

    def _observe(self, envelope: Envelope) -> None:
        seq = self._sender_seq(envelope)
        if seq is None:
            return
        sender = _sender_bytes(envelope)
        clock = _clock(envelope)
        wave = wave_of(clock)
        key = (sender, seq)
        seen = self._seen_in_wave.setdefault(wave, set())
        if key in seen:
            return
        seen.add(key)
        self._messages_by_wave.setdefault(wave, []).append(envelope)
        existing = self._latest_vector.get(sender)
        if existing is None or dominates_or_equal(clock, existing):
            self._latest_vector[sender] = tuple(clock)

    def _is_class_one(self, envelope: Envelope) -> bool:
        return self._classify(envelope.payload) == 1

    def _is_executed(self, envelope: Envelope) -> bool:
        seq = self._sender_seq(envelope)
        if seq is None:
            return False
        return (_sender_bytes(envelope), seq) in self._executed

    def _apply(self, envelope: Envelope) -> None:
        seq = self._sender_seq(envelope)
        if seq is None:
            return
        self._executed.add((_sender_bytes(envelope), seq))
        self._emit(Delivery(envelope))

    # ─── class 1: eager ───────────────────────────────────────────

    def _try_eager_executions(self) -> None:
        progressed = True
        while progressed:
            progressed = False
            for envelopes in list(self._messages_by_wave.values()):
                for envelope in list(envelopes):
                    if not self._is_class_one(envelope) or self._is_executed(envelope):
                        continue
                    if self._predecessors_executed(envelope):
                        self._apply(envelope)
                        progressed = True

    def _predecessors_executed(self, envelope: Envelope) -> bool:
        assert envelope.id is not None and envelope.id.sender is not None
        sender_slot = self._membership.slot_of(envelope.id.sender)
        if sender_slot < 0:
            return False
        seq = self._sender_seq(envelope)
        if seq is None:
            return False
        sender = _sender_bytes(envelope)
        for slot, dep_seq in enumerate(_clock(envelope)):
            if slot == sender_slot:
                if seq > 1 and (sender, seq - 1) not in self._executed:
                    return False
                continue
            if dep_seq == 0:
                continue
            replica = self._membership.replica(slot)
            if (replica.value, dep_seq) not in self._executed:
                return False
        return True

    # ─── class 2+: wave by wave ───────────────────────────────────

    def _advance_wave(self) -> None:
        while True:
            if not self._wave_complete(self._current_wave):
                return
            if not self._continuation_property():
                return
            envelopes = self._messages_by_wave[self._current_wave]
            envelopes.sort(key=_sender_bytes)
            for envelope in list(envelopes):
                if self._is_class_one(envelope) or self._is_executed(envelope):
                    continue
                self._apply(envelope)
            self._try_eager_executions()
            following = self._find_next_strict_wave(self._current_wave + 1)
            if following is None:
                return
            self._current_wave = following

    def _find_next_strict_wave(self, start: int) -> int | None:
        candidate = start
        while True:
            for envelope in self._messages_by_wave.get(candidate, ()):
                if not self._is_class_one(envelope):
                    return candidate
            if candidate > max(self._messages_by_wave, default=0):
                return None
            candidate += 1

    def _wave_complete(self, wave: int) -> bool:
        return any(self._is_stable(m) for m in self._messages_by_wave.get(wave, ()))

    def _is_stable(self, envelope: Envelope) -> bool:
        assert envelope.id is not None and envelope.id.sender is not None
        sender_slot = self._membership.slot_of(envelope.id.sender)
        if sender_slot < 0:
            return False
        seq = self._sender_seq(envelope)
        if seq is None:
            return False
        sender = _sender_bytes(envelope)
        for slot in range(len(self._membership)):
            if slot == sender_slot or self._membership.is_frozen(slot):
                continue
            replica = self._membership.replica(slot)
            if replica.value == sender:
                continue
            latest = self._latest_vector.get(replica.value)
            if latest is None or _component(latest, sender_slot) < seq:
                return False
        return True

    def _continuation_property(self) -> bool:
        for replica in self._membership.replicas():
            latest = self._latest_vector.get(replica.value)
            if latest is None or wave_of(latest) < self._current_wave:
                return False
        return True


def _always_class_one(_payload: bytes) -> int:
    return 1