# [TESTER] v1

from __future__ import annotations

import json
from pathlib import Path

import pytest

from veilbatch.state.events import EventKind, EventLog, LedgerEvent


def _queued(log: EventLog, *, counter: int, window_id: int, index: int = 0) -> LedgerEvent:
    return log.append(
        EventKind.QUEUED,
        counter=counter,
        pool_id="p",
        args={
            "window_id": window_id,
            "intent_index": index,
            "owner": "0xabc",
            "amount_in": 10,
            "direction": "zero_for_one",
        },
    )


def test_positions_are_sequential_and_read_by_position() -> None:
    log = EventLog()
    for i in range(5):
        assert _queued(log, counter=i, window_id=0, index=i).position == i
    assert len(log) == 5
    assert [e.position for e in log.read(2)] == [2, 3, 4]
    assert [e.position for e in log.read(1, 3)] == [1, 2]


def test_read_by_counter_is_inclusive_and_filters_kinds() -> None:
    log = EventLog()
    _queued(log, counter=10, window_id=1)
    _queued(log, counter=20, window_id=2)
    log.append(EventKind.CLEARED, counter=25, pool_id="p", args={"window_id": 1, "total_in": 10, "total_out": 10})
    _queued(log, counter=30, window_id=3)

    got = log.read_by_counter(kinds=[EventKind.QUEUED], from_counter=10, to_counter=30)
    assert [e.window_id for e in got] == [1, 2, 3]
    got = log.read_by_counter(from_counter=20, to_counter=25)
    assert [e.kind for e in got] == [EventKind.QUEUED, EventKind.CLEARED]
    assert log.read_by_counter(from_counter=31) == []


def test_missing_args_rejected() -> None:
    log = EventLog()
    with pytest.raises(ValueError):
        log.append(EventKind.CLEARED, counter=0, pool_id="p", args={"window_id": 1})
    assert len(log) == 0


def test_subscribe_filters_and_unsubscribes() -> None:
    log = EventLog()
    seen: list[LedgerEvent] = []
    unsubscribe = log.subscribe(seen.extend, kinds=[EventKind.CLEARED])
    _queued(log, counter=1, window_id=0)
    log.append(EventKind.CLEARED, counter=2, pool_id="p", args={"window_id": 0, "total_in": 1, "total_out": 1})
    assert [e.kind for e in seen] == [EventKind.CLEARED]
    assert log.subscriber_count == 1
    unsubscribe()
    assert log.subscriber_count == 0
    log.append(EventKind.CLEARED, counter=3, pool_id="p", args={"window_id": 1, "total_in": 1, "total_out": 1})
    assert len(seen) == 1


def test_failing_subscriber_does_not_undo_append() -> None:
    log = EventLog()

    def boom(_events: list[LedgerEvent]) -> None:
        raise RuntimeError("listener bug")

    log.subscribe(boom)
    event = _queued(log, counter=1, window_id=0)
    assert log.read() == [event]


def test_journal_persists_and_replays(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    log = EventLog(path)
    _queued(log, counter=5, window_id=0)
    log.append(EventKind.CLEARED, counter=12, pool_id="p", args={"window_id": 0, "total_in": 10, "total_out": 9})

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    # Canonical JSON: sorted keys, no whitespace.
    assert lines[0] == json.dumps(json.loads(lines[0]), sort_keys=True, separators=(",", ":"))

    reopened = EventLog(path)
    assert reopened.read() == log.read()
    nxt = _queued(reopened, counter=20, window_id=2)
    assert nxt.position == 2


def test_journal_with_gap_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    event = LedgerEvent(position=1, counter=0, pool_id="p", kind=EventKind.CLEARED,
                        args={"window_id": 0, "total_in": 0, "total_out": 0})
    path.write_text(json.dumps(event.to_dict()) + "\n", encoding="utf-8")
    with pytest.raises(ValueError):
        EventLog(path)


def test_staged_event_is_invisible_until_commit(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    log = EventLog(path)
    seen: list[LedgerEvent] = []
    log.subscribe(seen.extend)

    event = log.stage(EventKind.CLEARED, counter=10, pool_id="p", args={"window_id": 0, "total_in": 5, "total_out": 5})
    assert len(log) == 0
    assert seen == []
    assert len(path.read_text(encoding="utf-8").splitlines()) == 1

    log.commit(event)
    assert log.read() == [event]
    assert seen == [event]


def test_abort_drops_staged_event_and_journal_line(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    log = EventLog(path)
    kept = _queued(log, counter=1, window_id=0)
    size = path.stat().st_size

    dropped = log.stage(EventKind.CLEARED, counter=10, pool_id="p", args={"window_id": 0, "total_in": 5, "total_out": 5})
    log.abort(dropped)
    assert path.stat().st_size == size
    assert log.read() == [kept]

    again = _queued(log, counter=2, window_id=0, index=1)
    assert again.position == 1
    assert [e.position for e in EventLog(path).read()] == [0, 1]
    with pytest.raises(RuntimeError):
        log.commit(dropped)


def test_unwritable_journal_fails_stage_and_releases_writer(tmp_path: Path) -> None:
    log = EventLog(tmp_path / "absent" / "events.jsonl")
    with pytest.raises(OSError):
        _queued(log, counter=1, window_id=0)
    assert len(log) == 0

    (tmp_path / "absent").mkdir()
    assert _queued(log, counter=2, window_id=0).position == 0
