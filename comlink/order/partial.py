"""Passthrough ordering: deliveries are applied in causal arrival order."""

from __future__ import annotations

from comlink.order.base import Delivery, Order


class PartialOrder(Order):
    """Applies every delivery immediately, in the order it arrives.

    Useful when the application's operations fully commute or when the
    application handles ordering itself.
    """

    def process(self, delivery: Delivery) -> None:
        """Apply delivery at once unless the order is closed."""
        with self._lock:
            self._emit(delivery)