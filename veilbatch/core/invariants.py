"""Invariant checkers for window aggregates.

Each function returns True when the invariant holds; `check_all()` returns the
list of violated invariant ids (empty = all pass). The ledger runs it on every
candidate post-state before committing.
"""

from __future__ import annotations

from typing import Callable

from ..state.windows import WINDOW_FIELDS, WindowState


def inv_non_negative(w: WindowState) -> bool:
    return all(getattr(w, name) >= 0 for name in WINDOW_FIELDS)


def inv_terminal_bounded(w: WindowState) -> bool:
    return w.terminal_intent_count <= w.intent_count


def inv_claimed_bounded(w: WindowState) -> bool:
    return w.claimed_out_sum <= w.total_out


def inv_uncleared_zeroed(w: WindowState) -> bool:
    if w.cleared:
        return True
    return w.total_out == 0 and w.claimed_out_sum == 0 and w.terminal_intent_count == 0


def inv_swept_only_when_settled(w: WindowState) -> bool:
    if not w.dust_swept:
        return True
    return w.cleared and w.terminal_intent_count == w.intent_count


def inv_empty_window_has_no_input(w: WindowState) -> bool:
    if w.intent_count > 0:
        return True
    return w.total_in == 0


INVARIANT_REGISTRY: dict[str, Callable[[WindowState], bool]] = {
    "inv_non_negative": inv_non_negative,
    "inv_terminal_bounded": inv_terminal_bounded,
    "inv_claimed_bounded": inv_claimed_bounded,
    "inv_uncleared_zeroed": inv_uncleared_zeroed,
    "inv_swept_only_when_settled": inv_swept_only_when_settled,
    "inv_empty_window_has_no_input": inv_empty_window_has_no_input,
}


def check_all(state: WindowState) -> list[str]:
    """Return list of violated invariant ids (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(state)
    ]
