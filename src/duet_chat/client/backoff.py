"""Exponential reconnection delay."""

from __future__ import annotations


class Backoff:
    """Reconnection delay that grows geometrically up to a cap.

    ``current`` is the wait before the next attempt. Each failure multiplies
    it by ``factor``; a successful connection resets it to ``initial``.
    """

    def __init__(self, initial: float = 10.0, factor: float = 1.5, maximum: float = 300.0) -> None:
        if initial <= 0 or factor < 1 or maximum < initial:
            raise ValueError("backoff requires initial > 0, factor >= 1 and maximum >= initial")
        self.initial = initial
        self.factor = factor
        self.maximum = maximum
        self.current = initial

    def next_delay(self) -> float:
        """Return the delay to wait now and advance for the following failure."""
        delay = self.current
        self.current = min(self.current * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self.current = self.initial
