from __future__ import annotations

from veilbatch.agents.tracker import WindowPhase, WindowTracker


def test_queued_marks_pending_and_counts_idempotently() -> None:
    t = WindowTracker()
    t.note_queued(3, 0)
    t.note_queued(3, 1)
    t.note_queued(3, 1)
    assert t.observed_count(3) == 2
    assert t.snapshot_pending() == [3]
    assert t.phase(3) is WindowPhase.OPEN


def test_cleared_wins_over_later_replayed_queued() -> None:
    t = WindowTracker()
    t.note_cleared(2)
    t.note_queued(2, 0)
    assert t.snapshot_pending() == []
    assert t.is_cleared(2)
    assert t.phase(2) is WindowPhase.CLEARED


def test_range_ended_skips_known_cleared() -> None:
    t = WindowTracker()
    t.note_cleared(1)
    added = t.mark_range_ended(0, 4)
    assert added == [0, 2, 3]
    assert t.snapshot_pending() == [0, 2, 3]
    assert t.phase(2) is WindowPhase.WATCHED_PENDING


def test_next_batch_is_oldest_first_below_current_and_bounded() -> None:
    t = WindowTracker()
    for w in (9, 4, 7, 1, 5):
        t.note_queued(w, 0)
    assert t.next_batch(current_window=8, limit=3) == [1, 4, 5]
    assert t.next_batch(current_window=8, limit=16) == [1, 4, 5, 7]


def test_empty_and_attempted_phases() -> None:
    t = WindowTracker()
    t.mark_range_ended(0, 2)
    t.note_empty(0)
    t.note_attempted(1)
    assert t.phase(0) is WindowPhase.SKIPPED_EMPTY
    assert t.phase(1) is WindowPhase.CLEAR_ATTEMPTED
    assert t.snapshot_pending() == [1]


def test_replay_equals_live_sequence() -> None:
    live = WindowTracker()
    for w, i in [(0, 0), (0, 1), (1, 0), (2, 0)]:
        live.note_queued(w, i)
    live.note_cleared(0)

    replayed = WindowTracker()
    replayed.replay(queued=[(0, 0), (0, 1), (1, 0), (2, 0)], cleared=[0])
    assert replayed.snapshot_pending() == live.snapshot_pending() == [1, 2]


def test_prune_finished_drops_only_settled_windows_below_bound() -> None:
    t = WindowTracker()
    t.note_queued(0, 0)
    t.note_cleared(0)
    t.mark_range_ended(1, 2)
    t.note_empty(1)
    t.note_queued(2, 0)  # still pending
    t.note_queued(5, 0)
    t.note_cleared(5)  # settled but not below the bound

    assert t.prune_finished(5) == 2
    assert t.tracked_count() == 2
    assert t.snapshot_pending() == [2]
    assert t.observed_count(0) == 0
    assert t.phase(1) is WindowPhase.OPEN
    assert t.is_cleared(5)
