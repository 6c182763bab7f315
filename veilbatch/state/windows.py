"""Window aggregate record.

`WindowState` is immutable; the ledger derives a candidate post-state with
`dataclasses.replace`, checks invariants on it, and only then commits it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class WindowState:
    """Aggregate counters for one window. An unknown window reads as all zeros."""

    total_in: int = 0
    total_out: int = 0
    intent_count: int = 0
    terminal_intent_count: int = 0
    claimed_out_sum: int = 0
    cleared: bool = False
    dust_swept: bool = False
    cancelled_count: int = 0

    @property
    def exists(self) -> bool:
        return self.intent_count > 0

    @property
    def settled(self) -> bool:
        return self.cleared and self.terminal_intent_count == self.intent_count

    @property
    def dust(self) -> int:
        return self.total_out - self.claimed_out_sum


WINDOW_FIELDS: tuple[str, ...] = tuple(WindowState.__dataclass_fields__)


def window_to_dict(state: WindowState) -> dict[str, bool | int]:
    return {name: getattr(state, name) for name in WINDOW_FIELDS}


def window_from_dict(d: Mapping[str, Any]) -> WindowState:
    kwargs: dict[str, Any] = {}
    for name in WINDOW_FIELDS:
        if name not in d:
            continue
        val = d[name]
        if isinstance(val, bool):
            kwargs[name] = val
        elif isinstance(val, int):
            kwargs[name] = int(val)
        else:
            raise TypeError(f"window field {name!r} must be bool|int, got {type(val).__name__}")
    return WindowState(**kwargs)
