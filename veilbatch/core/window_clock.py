"""
Window boundary arithmetic.

Maps a monotonic counter (block height) to a window id and back. Window `k`
covers the half-open range `[start + k*N, start + (k+1)*N)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .errors import ConfigError, InvalidWindowSize, NotStarted


@dataclass(frozen=True)
class WindowClock:
    start: int
    window_size: int

    def __post_init__(self) -> None:
        if not isinstance(self.window_size, int) or isinstance(self.window_size, bool):
            raise ConfigError("window_size must be an int")
        if self.window_size <= 0:
            raise InvalidWindowSize(self.window_size)
        if not isinstance(self.start, int) or isinstance(self.start, bool) or self.start < 0:
            raise ConfigError(f"start must be a non-negative int: {self.start!r}")

    def window_id(self, counter: int) -> int:
        if counter < self.start:
            raise NotStarted(counter, self.start)
        return (counter - self.start) // self.window_size

    def bounds(self, window_id: int) -> Tuple[int, int]:
        """Return `(start, end)` of the window; `end` is exclusive."""
        if window_id < 0:
            raise ValueError(f"window_id must be non-negative: {window_id}")
        lo = self.start + window_id * self.window_size
        return lo, lo + self.window_size

    def window_start(self, window_id: int) -> int:
        return self.bounds(window_id)[0]

    def window_end_exclusive(self, window_id: int) -> int:
        return self.bounds(window_id)[1]

    def has_ended(self, window_id: int, counter: int) -> bool:
        return counter >= self.window_end_exclusive(window_id)

    def blocks_remaining(self, counter: int) -> int:
        """Counter ticks left in the window containing `counter`."""
        return self.window_end_exclusive(self.window_id(counter)) - counter
