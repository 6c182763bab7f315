"""
Notification stream.

`EventLog` is the ledger's ordered, append-only record of what happened.
Every event carries its log `position` and the `counter` (block height) at
which it was emitted, so readers can replay from a position or from a counter
lookback, the way the clearing agent bootstraps after a restart.

The log can optionally be journaled to a JSON-lines file (one canonical JSON
object per line); an existing journal is replayed when the log is opened.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, unique
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .canonical import canonical_json_bytes


log = logging.getLogger("veilbatch.events")


@unique
class EventKind(Enum):
    QUEUED = "Queued"
    CLEARED = "Cleared"
    CLAIMED = "Claimed"
    CANCELLED = "Cancelled"
    DUST_SWEPT = "DustSwept"


# Required argument names per event kind.
EVENT_ARGS: Dict[EventKind, tuple[str, ...]] = {
    EventKind.QUEUED: ("window_id", "intent_index", "owner", "amount_in", "direction"),
    EventKind.CLEARED: ("window_id", "total_in", "total_out"),
    EventKind.CLAIMED: ("window_id", "intent_index", "owner", "amount_out"),
    EventKind.CANCELLED: ("window_id", "intent_index", "owner", "amount_in"),
    EventKind.DUST_SWEPT: ("window_id", "destination", "amount"),
}


@dataclass(frozen=True)
class LedgerEvent:
    position: int
    counter: int
    pool_id: str
    kind: EventKind
    args: Mapping[str, Any] = field(default_factory=dict)

    @property
    def window_id(self) -> int:
        return int(self.args["window_id"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "counter": self.counter,
            "pool_id": self.pool_id,
            "kind": self.kind.value,
            "args": dict(self.args),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LedgerEvent":
        return cls(
            position=int(d["position"]),
            counter=int(d["counter"]),
            pool_id=str(d["pool_id"]),
            kind=EventKind(d["kind"]),
            args=dict(d["args"]),
        )


Subscriber = Callable[[List[LedgerEvent]], None]


class EventLog:
    """Append-only, replayable-by-position event log."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._events: List[LedgerEvent] = []
        self._subscribers: Dict[int, tuple[Subscriber, Optional[frozenset[EventKind]]]] = {}
        self._next_sub_id = 0
        self._lock = threading.Lock()
        self._writer = threading.Lock()
        self._staged: Optional[tuple[LedgerEvent, Optional[int]]] = None
        self._path = Path(path) if path is not None else None
        if self._path is not None and self._path.exists():
            self._load(self._path)

    def _load(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                event = LedgerEvent.from_dict(json.loads(line))
                if event.position != len(self._events):
                    raise ValueError(
                        f"{path}:{lineno}: journal position {event.position} != expected {len(self._events)}"
                    )
                self._events.append(event)
        log.info("journal-replayed path=%s events=%d", path, len(self._events))

    def append(self, kind: EventKind, *, counter: int, pool_id: str, args: Mapping[str, Any]) -> LedgerEvent:
        event = self.stage(kind, counter=counter, pool_id=pool_id, args=args)
        self.commit(event)
        return event

    def stage(self, kind: EventKind, *, counter: int, pool_id: str, args: Mapping[str, Any]) -> LedgerEvent:
        """
        Journal `event` without making it visible.

        A staged event is invisible to readers and subscribers until `commit`;
        `abort` removes its journal line. At most one event is staged at a time;
        other writers block until it is committed or aborted.
        """
        missing = [name for name in EVENT_ARGS[kind] if name not in args]
        if missing:
            raise ValueError(f"{kind.value} event missing args: {missing}")
        self._writer.acquire()
        try:
            with self._lock:
                event = LedgerEvent(
                    position=len(self._events),
                    counter=int(counter),
                    pool_id=pool_id,
                    kind=kind,
                    args=dict(args),
                )
            offset: Optional[int] = None
            if self._path is not None:
                offset = self._path.stat().st_size if self._path.exists() else 0
                try:
                    with self._path.open("ab") as f:
                        f.write(canonical_json_bytes(event.to_dict()) + b"\n")
                except OSError:
                    self._truncate(offset)
                    raise
        except BaseException:
            self._writer.release()
            raise
        self._staged = (event, offset)
        return event

    def commit(self, event: LedgerEvent) -> None:
        """Publish a staged event to readers, then to subscribers."""
        with self._lock:
            self._take_staged(event)
            self._events.append(event)
            subscribers = list(self._subscribers.values())
        self._writer.release()

        for callback, kinds in subscribers:
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                callback([event])
            except Exception:
                # The event is committed; a failing listener must not undo it.
                log.exception("subscriber-error kind=%s position=%d", event.kind.value, event.position)

    def abort(self, event: LedgerEvent) -> None:
        """Drop a staged event and its journal line."""
        offset = self._take_staged(event)
        try:
            if offset is not None:
                self._truncate(offset)
        finally:
            self._writer.release()

    def _take_staged(self, event: LedgerEvent) -> Optional[int]:
        if self._staged is None or self._staged[0] is not event:
            raise RuntimeError(f"event at position {event.position} is not staged")
        _, offset = self._staged
        self._staged = None
        return offset

    def _truncate(self, offset: int) -> None:
        if self._path is not None and self._path.exists() and self._path.stat().st_size > offset:
            with self._path.open("r+b") as f:
                f.truncate(offset)

    def read(self, from_position: int = 0, to_position: Optional[int] = None) -> List[LedgerEvent]:
        """Events with `from_position <= position < to_position`."""
        with self._lock:
            return list(self._events[from_position:to_position])

    def read_by_counter(
        self,
        *,
        kinds: Optional[Iterable[EventKind]] = None,
        from_counter: int = 0,
        to_counter: Optional[int] = None,
    ) -> List[LedgerEvent]:
        """Events emitted at `from_counter <= counter <= to_counter` (inclusive, like a block range)."""
        wanted = frozenset(kinds) if kinds is not None else None
        with self._lock:
            snapshot = list(self._events)
        return [
            e
            for e in snapshot
            if (wanted is None or e.kind in wanted)
            and e.counter >= from_counter
            and (to_counter is None or e.counter <= to_counter)
        ]

    def subscribe(self, callback: Subscriber, *, kinds: Optional[Iterable[EventKind]] = None) -> Callable[[], None]:
        """Register a live listener; returns a function that detaches it."""
        with self._lock:
            sub_id = self._next_sub_id
            self._next_sub_id += 1
            self._subscribers[sub_id] = (callback, frozenset(kinds) if kinds is not None else None)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(sub_id, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
