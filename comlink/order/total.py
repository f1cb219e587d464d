"""Deterministic total ordering: every replica applies the same sequence.

Messages are grouped by wave (the maximum component of their vector
clock). When the next pending wave becomes wave-complete, its messages
are sorted by sender replica bytes and applied; then the next wave is
tried. Waves are causally ordered by construction, and the sender sort
breaks ties the same way at every replica.

The conversation must provide ``wave_complete(wave) -> bool`` and
``messages_in_wave(wave) -> iterable of Envelope``.
"""

from __future__ import annotations

from typing import Any

from comlink.envelope import Envelope
from comlink.order.base import Delivery, Order


def _sender_bytes(envelope: Envelope) -> bytes:
    if envelope.id is None or envelope.id.sender is None:
        return b""
    return envelope.id.sender.value


class TotalOrder(Order):
    """Applies whole waves, sorted by sender, once each wave is complete."""

    def __init__(self, conversation: Any) -> None:
        super().__init__(conversation)
        # Wave numbers start at 1: a first send raises one clock slot to 1.
        self._next_wave = 1

    def process(self, delivery: Delivery) -> None:
        """Note a delivery and apply every consecutively complete wave."""
        with self._lock:
            if self._closed:
                return
            while self._conversation.wave_complete(self._next_wave):
                envelopes = sorted(
                    self._conversation.messages_in_wave(self._next_wave),
                    key=_sender_bytes,
                )
                for envelope in envelopes:
                    if not self._emit(Delivery(envelope)):
                        return
                self._next_wave += 1