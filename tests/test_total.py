import pytest

from comlink.envelope import ConversationID, Envelope, MessageID, ReplicaID
from comlink.order.base import Delivery
from comlink.order.partial import PartialOrder
from comlink.order.total import TotalOrder

CONV = ConversationID(b"order-test".ljust(16, b"\0"))


def r(tag):
    return ReplicaID(tag.encode().ljust(16, b"\0"))


def envelope(sender, clock, payload):
    return Envelope(
        id=MessageID(conversation_id=CONV, sender=sender, vector_clock=tuple(clock)),
        payload=payload,
    )


class FakeConversation:
    """Tracks received envelopes and answers wave queries from vector clocks."""

    def __init__(self, members):
        self.members = list(members)
        self.received = []
        self.latest = {}

    def deliver(self, env):
        self.received.append(env)
        key = env.id.sender.value
        prev = self.latest.get(key)
        clock = env.id.vector_clock
        if prev is None or all(a >= b for a, b in zip(clock, prev)):
            self.latest[key] = clock
        return Delivery(env)

    def _slot(self, sender):
        return [m.value for m in self.members].index(sender.value)

    def messages_in_wave(self, wave):
        return [e for e in self.received if max(e.id.vector_clock) == wave]

    def wave_complete(self, wave):
        zeros = (0,) * len(self.members)
        for env in self.messages_in_wave(wave):
            slot = self._slot(env.id.sender)
            seq = env.id.vector_clock[slot]
            if all(
                self.latest.get(m.value, zeros)[slot] >= seq
                for i, m in enumerate(self.members)
                if i != slot
            ):
                return True
        return False


def feed(conv, order, env):
    order.process(conv.deliver(env))


def payloads(order):
    return [a.envelope.payload.decode() for a in order.applied()]


def concurrent_round(members, round_no, payload_of):
    out = []
    for slot, sender in enumerate(members):
        clock = [round_no] * len(members)
        clock[slot] = round_no + 1
        out.append(envelope(sender, clock, payload_of(slot, round_no)))
    return out


def test_total_waits_for_wave_completion():
    alice, bob = r("alice"), r("bob")
    conv = FakeConversation([alice, bob])
    total = TotalOrder(conv)

    feed(conv, total, envelope(alice, (1, 0), b"a-1"))
    assert payloads(total) == []

    feed(conv, total, envelope(bob, (1, 1), b"b-1"))
    assert payloads(total) == ["a-1", "b-1"]


def test_total_respects_causal_order():
    alice, bob = r("alice"), r("bob")
    script = [
        envelope(alice, (1, 0), b"a-1"),
        envelope(bob, (1, 1), b"b-1"),
        envelope(alice, (2, 1), b"a-2"),
        envelope(bob, (2, 2), b"b-2"),
    ]
    for _ in range(2):
        conv = FakeConversation([alice, bob])
        total = TotalOrder(conv)
        for env in script:
            feed(conv, total, env)
        assert payloads(total)[:3] == ["a-1", "b-1", "a-2"]


def test_total_same_order_everywhere():
    members = [r("alice"), r("bob"), r("carol")]
    real_rounds = 3
    total_rounds = real_rounds + 1
    rounds = [
        concurrent_round(members, n, lambda i, rn: f"{i}-{rn}".encode())
        for n in range(total_rounds)
    ]

    sequences = []
    for replica in range(len(members)):
        conv = FakeConversation(members)
        total = TotalOrder(conv)
        for msgs in rounds:
            rotated = msgs[replica:] + msgs[:replica]
            for env in rotated:
                feed(conv, total, env)
        sequences.append(payloads(total)[: len(members) * real_rounds])

    want = len(members) * real_rounds
    assert all(len(seq) == want for seq in sequences)
    assert sequences[1] == sequences[0]
    assert sequences[2] == sequences[0]
    assert sequences[0][:3] == ["0-0", "1-0", "2-0"]


def test_total_sorts_wave_by_sender_bytes():
    alice, bob = r("alice"), r("bob")
    conv = FakeConversation([alice, bob])
    total = TotalOrder(conv)
    feed(conv, total, envelope(bob, (0, 1), b"b-1"))
    feed(conv, total, envelope(alice, (1, 0), b"a-1"))
    feed(conv, total, envelope(bob, (1, 2), b"b-2"))
    feed(conv, total, envelope(alice, (2, 2), b"a-2"))
    assert payloads(total)[:2] == ["a-1", "b-1"]


def test_total_closed_applies_nothing():
    alice, bob = r("alice"), r("bob")
    conv = FakeConversation([alice, bob])
    total = TotalOrder(conv)
    total.close()
    feed(conv, total, envelope(alice, (1, 0), b"a-1"))
    feed(conv, total, envelope(bob, (1, 1), b"b-1"))
    assert payloads(total) == []


@pytest.mark.parametrize("make_order", [PartialOrder, TotalOrder], ids=["partial", "total"])
def test_replicated_counter_converges(make_order):
    members = [r("alice"), r("bob"), r("carol")]
    incs_per_replica = 5
    settle = 1
    want = incs_per_replica * len(members)
    rounds = [
        concurrent_round(members, n, lambda i, rn: b"inc")
        for n in range(incs_per_replica + settle)
    ]
    for replica in range(len(members)):
        conv = FakeConversation(members)
        order = make_order(conv)
        for msgs in rounds:
            for env in msgs[replica:] + msgs[:replica]:
                feed(conv, order, env)
        count = sum(1 for p in payloads(order) if p == "inc")
        assert count >= want