"""
Counter sources.

The ledger reads "now" from a zero-argument callable returning the current
block height. `ManualCounter` is the in-process source used by simulations and
tests; it only moves forward.
"""

from __future__ import annotations

import threading


class ManualCounter:
    """Monotonic, thread-safe block height."""

    def __init__(self, start: int = 0) -> None:
        if not isinstance(start, int) or isinstance(start, bool) or start < 0:
            raise ValueError("start must be a non-negative int")
        self._value = start
        self._lock = threading.Lock()

    def __call__(self) -> int:
        return self.current()

    def current(self) -> int:
        with self._lock:
            return self._value

    def advance(self, blocks: int = 1) -> int:
        if not isinstance(blocks, int) or isinstance(blocks, bool) or blocks < 0:
            raise ValueError("blocks must be a non-negative int")
        with self._lock:
            self._value += blocks
            return self._value

    def set(self, value: int) -> int:
        with self._lock:
            if value < self._value:
                raise ValueError(f"counter is monotonic: {value} < {self._value}")
            self._value = value
            return self._value
