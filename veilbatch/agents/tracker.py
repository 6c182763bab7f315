"""
Clearing agent bookkeeping.

The tracker is the agent's advisory view of the ledger: which windows have
been seen to receive intents, which are known cleared, and which are pending a
clear attempt. It is rebuilt from notification replay after a restart; ledger
reads remain authoritative.
"""

from __future__ import annotations

import threading
from enum import Enum, unique
from typing import Dict, Iterable, List, Set, Tuple


@unique
class WindowPhase(Enum):
    OPEN = "open"
    WATCHED_PENDING = "watched_pending"
    CLEAR_ATTEMPTED = "clear_attempted"
    CLEARED = "cleared"
    SKIPPED_EMPTY = "skipped_empty"


class WindowTracker:
    """Thread-safe pending set plus per-window phase and observed intent counts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Set[int] = set()
        self._cleared: Set[int] = set()
        self._observed: Dict[int, Set[int]] = {}
        self._phase: Dict[int, WindowPhase] = {}

    def note_queued(self, window_id: int, intent_index: int) -> None:
        """Record a Queued notification. Replays of the same intent are idempotent."""
        with self._lock:
            self._observed.setdefault(window_id, set()).add(intent_index)
            if window_id in self._cleared:
                return
            self._pending.add(window_id)
            self._phase.setdefault(window_id, WindowPhase.OPEN)

    def note_cleared(self, window_id: int) -> None:
        with self._lock:
            self._cleared.add(window_id)
            self._pending.discard(window_id)
            self._phase[window_id] = WindowPhase.CLEARED

    def note_empty(self, window_id: int) -> None:
        with self._lock:
            self._pending.discard(window_id)
            self._phase[window_id] = WindowPhase.SKIPPED_EMPTY

    def note_attempted(self, window_id: int) -> None:
        with self._lock:
            if window_id not in self._cleared:
                self._phase[window_id] = WindowPhase.CLEAR_ATTEMPTED

    def mark_range_ended(self, from_window: int, to_window: int) -> List[int]:
        """Mark every window in `[from_window, to_window)` not known cleared as pending."""
        added: List[int] = []
        with self._lock:
            for window_id in range(max(from_window, 0), to_window):
                if window_id in self._cleared:
                    continue
                if window_id not in self._pending:
                    added.append(window_id)
                self._pending.add(window_id)
                self._phase[window_id] = WindowPhase.WATCHED_PENDING
        return added

    def next_batch(self, current_window: int, limit: int) -> List[int]:
        """Oldest-first pending ids strictly below `current_window`, at most `limit`."""
        with self._lock:
            ready = sorted(w for w in self._pending if w < current_window)
        return ready[:limit]

    def prune_finished(self, below_window: int) -> int:
        """Forget cleared or empty windows below `below_window`; returns how many were dropped."""
        with self._lock:
            done = [
                w
                for w, phase in self._phase.items()
                if w < below_window
                and w not in self._pending
                and phase in (WindowPhase.CLEARED, WindowPhase.SKIPPED_EMPTY)
            ]
            for w in done:
                del self._phase[w]
                self._cleared.discard(w)
                self._observed.pop(w, None)
        return len(done)

    def tracked_count(self) -> int:
        with self._lock:
            return len(self._phase.keys() | self._cleared | self._observed.keys())

    def snapshot_pending(self) -> List[int]:
        with self._lock:
            return sorted(self._pending)

    def observed_count(self, window_id: int) -> int:
        with self._lock:
            return len(self._observed.get(window_id, ()))

    def phase(self, window_id: int) -> WindowPhase:
        with self._lock:
            return self._phase.get(window_id, WindowPhase.OPEN)

    def is_cleared(self, window_id: int) -> bool:
        with self._lock:
            return window_id in self._cleared

    def replay(self, queued: Iterable[Tuple[int, int]], cleared: Iterable[int]) -> None:
        for window_id, intent_index in queued:
            self.note_queued(window_id, intent_index)
        for window_id in cleared:
            self.note_cleared(window_id)
