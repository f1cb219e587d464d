import pytest

from comlink.envelope import ConversationID, Envelope, MessageID, ReplicaID
from comlink.order.base import Applied, Delivery, Order


class _Echo(Order):
    def process(self, delivery):
        self._emit(delivery)


def _env(payload, sender=b"alice"):
    return Envelope(
        id=MessageID(
            conversation_id=ConversationID(b"order-test"),
            sender=ReplicaID(sender),
            vector_clock=(1,),
        ),
        payload=payload,
    )


def test_order_is_abstract():
    with pytest.raises(TypeError):
        Order(None)


def test_applied_yields_in_emit_order():
    order = _Echo(None)
    envs = [_env(b"one"), _env(b"two"), _env(b"three")]
    for env in envs:
        order.process(Delivery(env))
    assert [a.envelope for a in order.applied()] == envs


def test_applied_drains_queue():
    order = _Echo(None)
    order.process(Delivery(_env(b"x")))
    first = list(order.applied())
    second = list(order.applied())
    assert len(first) == 1
    assert second == []


def test_close_stops_new_applies_but_keeps_buffered():
    order = _Echo(None)
    order.process(Delivery(_env(b"before")))
    order.close()
    order.process(Delivery(_env(b"after")))
    payloads = [a.envelope.payload for a in order.applied()]
    assert payloads == [b"before"]


def test_close_is_idempotent():
    order = _Echo(None)
    order.close()
    order.close()
    order.process(Delivery(_env(b"late")))
    assert list(order.applied()) == []


def test_applied_exposes_delivery_fields():
    env = _env(b"payload")
    delivery = Delivery(env, node="graph-node")
    applied = Applied(delivery)
    assert applied.envelope == env
    assert applied.node == "graph-node"
    assert applied.delivery is delivery


def test_delivery_node_defaults_to_none():
    assert Delivery(_env(b"p")).node is None