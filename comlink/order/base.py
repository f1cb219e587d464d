"""Ordering layers over a causally ordered delivery stream.

A conversation hands out deliveries in causal (partial) order. An Order
takes those deliveries one at a time through ``process`` and decides
when each envelope is applied. Applied envelopes queue up until the
application drains them through ``applied``. Closing an Order stops it
from applying anything more; it does not close the conversation, which
the caller owns.
"""

from __future__ import annotations

import abc
import threading
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from comlink.envelope import Envelope


@dataclass(frozen=True)
class Delivery:
    """One envelope delivered by the conversation, with optional graph context."""

    envelope: Envelope
    node: Any = None


@dataclass(frozen=True)
class Applied:
    """A delivery handed to the application once positioned in an order's sequence."""

    delivery: Delivery

    @property
    def envelope(self) -> Envelope:
        """The applied envelope."""
        return self.delivery.envelope

    @property
    def node(self) -> Any:
        """Graph context carried by the original delivery, if any."""
        return self.delivery.node


class Order(abc.ABC):
    """Base class for ordering policies layered on a conversation."""

    def __init__(self, conversation: Any) -> None:
        self._conversation = conversation
        self._pending: deque[Applied] = deque()
        self._lock = threading.RLock()
        self._closed = False

    @abc.abstractmethod
    def process(self, delivery: Delivery) -> None:
        """Take one delivery from the conversation and apply what it allows."""

    def applied(self) -> Iterator[Applied]:
        """Yield, and remove, every applied envelope queued so far, in order."""
        while True:
            try:
                item = self._pending.popleft()
            except IndexError:
                return
            yield item

    def close(self) -> None:
        """Stop applying; already queued envelopes stay readable. Idempotent."""
        with self._lock:
            self._closed = True

    def _emit(self, delivery: Delivery) -> bool:
        """Queue delivery as applied; return False if the order is closed."""
        if self._closed:
            return False
        self._pending.append(Applied(delivery))
        return True