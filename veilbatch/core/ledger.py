"""
Intent ledger: the single shared state machine of a batch pool.

Every mutating operation (`submit`, `clear`, `claim`, `cancel`, `sweep_dust`)
runs under one lock and follows the same steps:

1. read the current counter and the PRE-state,
2. run the operation's guard (raises a typed `LedgerError`),
3. derive the candidate POST-state and check window invariants,
4. stage the notification (journaled, not yet visible),
5. move value through the escrow collaborator (may raise `EscrowError`),
6. commit the POST-state, then publish the notification.

A failure in steps 2-5 leaves no trace: a staged notification is aborted and
its journal line removed. The ledger never retries; callers (the clearing
agent) own retry policy.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional, Set, Tuple

from ..state.balances import Address, Escrow
from ..state.events import EventKind, EventLog
from ..state.intents import Direction, Intent, Resolution
from ..state.windows import WindowState, window_from_dict, window_to_dict
from .errors import ClaimedExceedsTotal, ConfigError, InvalidOutput, InvariantViolation, MinOutNotMet
from .guards import (
    guard_cancel,
    guard_claim,
    guard_clear,
    guard_submit,
    guard_submit_args,
    guard_sweep_dust,
    lookup_intent,
)
from .invariants import check_all
from .settlement import OutputFunction, dust, pro_rata_share
from .window_clock import WindowClock


log = logging.getLogger("veilbatch.ledger")

CounterSource = Callable[[], int]

SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class LedgerConfig:
    """Static ledger parameters. Zero window size or zero capacity is fatal."""

    window_size: int = 10
    start_offset: int = 0
    max_intents_per_window: int = 256
    min_amount_in: int = 0
    cancel_delay: int = 50
    cancel_enabled: bool = True

    def __post_init__(self) -> None:
        for name in ("window_size", "start_offset", "max_intents_per_window", "min_amount_in", "cancel_delay"):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise ConfigError(f"{name} must be a non-negative int: {v!r}")
        if self.max_intents_per_window == 0:
            raise ConfigError("max_intents_per_window must be positive")
        self.clock()

    def clock(self) -> WindowClock:
        return WindowClock(start=self.start_offset, window_size=self.window_size)


class SubmitReceipt(NamedTuple):
    window_id: int
    intent_index: int


class IntentLedger:
    """Per-pool intent ledger with escrowed inputs and pull-based settlement."""

    def __init__(
        self,
        config: LedgerConfig,
        *,
        counter: CounterSource,
        output_fn: OutputFunction,
        escrow: Escrow,
        events: Optional[EventLog] = None,
        pool_id: str = "default",
    ) -> None:
        self.config = config
        self.clock = config.clock()
        self.pool_id = pool_id
        self.events = events if events is not None else EventLog()
        self._counter = counter
        self._output_fn = output_fn
        self._escrow = escrow
        self._windows: Dict[int, WindowState] = {}
        self._intents: Dict[int, List[Intent]] = {}
        self._submitted: Set[Tuple[Address, int]] = set()
        self._lock = threading.RLock()

    # -- read accessors ------------------------------------------------------

    def current_counter(self) -> int:
        return int(self._counter())

    def current_window_id(self) -> int:
        return self.clock.window_id(self.current_counter())

    def window_state(self, window_id: int) -> WindowState:
        with self._lock:
            return self._windows.get(window_id, WindowState())

    def intent_state(self, window_id: int, intent_index: int) -> Intent:
        with self._lock:
            intent = lookup_intent(self._intents.get(window_id, []), window_id=window_id, intent_index=intent_index)
            return replace(intent)

    def intents_in_window(self, window_id: int) -> List[Intent]:
        with self._lock:
            return [replace(i) for i in self._intents.get(window_id, [])]

    def has_submitted(self, owner: Address, window_id: int) -> bool:
        with self._lock:
            return (owner, window_id) in self._submitted

    def known_windows(self) -> List[int]:
        with self._lock:
            return sorted(self._windows)

    # -- mutations -----------------------------------------------------------

    def submit(
        self,
        owner: Address,
        amount_in: int,
        *,
        recipient: Optional[Address] = None,
        min_out: int = 0,
        direction: Direction = Direction.ZERO_FOR_ONE,
    ) -> SubmitReceipt:
        """Queue an intent into the currently open window. `recipient` defaults to `owner`."""
        recipient = owner if recipient is None else recipient
        guard_submit_args(
            amount_in=amount_in,
            min_out=min_out,
            recipient=recipient,
            min_amount_in=self.config.min_amount_in,
        )
        with self._lock:
            counter = self.current_counter()
            window_id = self.clock.window_id(counter)
            pre = self.window_state(window_id)
            guard_submit(
                pre,
                window_id=window_id,
                owner=owner,
                max_intents=self.config.max_intents_per_window,
                already_submitted=(owner, window_id) in self._submitted,
            )
            post = replace(pre, total_in=pre.total_in + amount_in, intent_count=pre.intent_count + 1)
            self._check(post)
            index = len(self._intents.get(window_id, []))

            with self._recorded(
                EventKind.QUEUED,
                counter,
                {
                    "window_id": window_id,
                    "intent_index": index,
                    "owner": owner,
                    "amount_in": amount_in,
                    "direction": direction.value,
                },
            ):
                self._escrow.collect(owner, amount_in)

                self._intents.setdefault(window_id, []).append(
                    Intent(
                        owner=owner,
                        recipient=recipient,
                        amount_in=amount_in,
                        min_out=min_out,
                        window_id=window_id,
                        index=index,
                        direction=direction,
                    )
                )
                self._windows[window_id] = post
                self._submitted.add((owner, window_id))
        log.debug("queued window=%d index=%d owner=%s amount_in=%d", window_id, index, owner, amount_in)
        return SubmitReceipt(window_id=window_id, intent_index=index)

    def clear(self, window_id: int) -> WindowState:
        """Fix the window's aggregate output. Permissionless; succeeds at most once."""
        with self._lock:
            counter = self.current_counter()
            pre = self.window_state(window_id)
            guard_clear(pre, window_id=window_id, clock=self.clock, counter=counter)

            total_out = self._output_fn.compute_window_output(window_id, pre.total_in)
            if not isinstance(total_out, int) or isinstance(total_out, bool) or total_out < 0:
                raise InvalidOutput(window_id, total_out)
            post = replace(pre, total_out=total_out, cleared=True)
            self._check(post)

            with self._recorded(
                EventKind.CLEARED,
                counter,
                {"window_id": window_id, "total_in": pre.total_in, "total_out": total_out},
            ):
                self._escrow.convert(window_id, pre.total_in, total_out)
                self._windows[window_id] = post
        log.info("cleared window=%d total_in=%d total_out=%d", window_id, pre.total_in, total_out)
        return post

    def quote_claim(self, window_id: int, intent_index: int) -> int:
        """Share a claim would pay right now (no checks on caller or state)."""
        with self._lock:
            window = self.window_state(window_id)
            intent = lookup_intent(self._intents.get(window_id, []), window_id=window_id, intent_index=intent_index)
            return pro_rata_share(window.total_out, intent.amount_in, window.total_in)

    def claim(self, window_id: int, intent_index: int, caller: Address) -> int:
        """Pay the caller's intent its floor-rounded share; returns the amount paid."""

        with self._lock:
            counter = self.current_counter()
            pre = self.window_state(window_id)
            intent = guard_claim(
                pre,
                self._intents.get(window_id, []),
                window_id=window_id,
                intent_index=intent_index,
                caller=caller,
            )
            amount_out = pro_rata_share(pre.total_out, intent.amount_in, pre.total_in)
            if amount_out < intent.min_out:
                raise MinOutNotMet(amount_out, intent.min_out)
            post = replace(
                pre,
                claimed_out_sum=pre.claimed_out_sum + amount_out,
                terminal_intent_count=pre.terminal_intent_count + 1,
            )
            self._check(post)

            with self._recorded(
                EventKind.CLAIMED,
                counter,
                {
                    "window_id": window_id,
                    "intent_index": intent_index,
                    "owner": intent.owner,
                    "amount_out": amount_out,
                },
            ):
                self._escrow.pay(intent.recipient, amount_out)

                intent.claimed = True
                intent.resolution = Resolution.CLAIMED
                intent.amount_out = amount_out
                self._windows[window_id] = post
        log.debug("claimed window=%d index=%d amount_out=%d", window_id, intent_index, amount_out)
        return amount_out

    def cancel(self, window_id: int, intent_index: int, caller: Address) -> int:
        """Withdraw an intent from a window that was never cleared; returns the refund."""
        with self._lock:
            counter = self.current_counter()
            pre = self.window_state(window_id)
            intent = guard_cancel(
                pre,
                self._intents.get(window_id, []),
                window_id=window_id,
                intent_index=intent_index,
                caller=caller,
                clock=self.clock,
                counter=counter,
                cancel_delay=self.config.cancel_delay,
                cancel_enabled=self.config.cancel_enabled,
            )
            # The intent leaves the live count; it is tallied in cancelled_count,
            # so terminal_intent_count keeps counting claims among live intents.
            post = replace(
                pre,
                total_in=pre.total_in - intent.amount_in,
                intent_count=pre.intent_count - 1,
                cancelled_count=pre.cancelled_count + 1,
            )
            self._check(post)

            with self._recorded(
                EventKind.CANCELLED,
                counter,
                {
                    "window_id": window_id,
                    "intent_index": intent_index,
                    "owner": intent.owner,
                    "amount_in": intent.amount_in,
                },
            ):
                self._escrow.refund(intent.owner, intent.amount_in)

                intent.claimed = True
                intent.resolution = Resolution.CANCELLED
                self._windows[window_id] = post
        log.info("cancelled window=%d index=%d refund=%d", window_id, intent_index, intent.amount_in)
        return intent.amount_in

    def sweep_dust(self, window_id: int, destination: Address) -> int:
        """Send the rounding remainder of a settled window to `destination`."""

        with self._lock:
            counter = self.current_counter()
            pre = self.window_state(window_id)
            guard_sweep_dust(pre, window_id=window_id, destination=destination)
            amount = dust(pre.total_out, pre.claimed_out_sum)
            if amount < 0:
                raise ClaimedExceedsTotal(pre.claimed_out_sum, pre.total_out)
            post = replace(pre, dust_swept=True)
            self._check(post)

            with self._recorded(
                EventKind.DUST_SWEPT,
                counter,
                {"window_id": window_id, "destination": destination, "amount": amount},
            ):
                self._escrow.pay(destination, amount)
                self._windows[window_id] = post
        log.info("dust-swept window=%d amount=%d destination=%s", window_id, amount, destination)
        return amount

    # -- snapshots -----------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict image of the ledger state (for any durable store)."""
        with self._lock:
            return {
                "version": SNAPSHOT_VERSION,
                "pool_id": self.pool_id,
                "windows": {str(wid): window_to_dict(w) for wid, w in sorted(self._windows.items())},
                "intents": {
                    str(wid): [i.to_dict() for i in intents] for wid, intents in sorted(self._intents.items())
                },
                "submitted": sorted([owner, wid] for owner, wid in self._submitted),
            }

    @classmethod
    def restore(
        cls,
        snapshot: Mapping[str, Any],
        config: LedgerConfig,
        *,
        counter: CounterSource,
        output_fn: OutputFunction,
        escrow: Escrow,
        events: Optional[EventLog] = None,
    ) -> "IntentLedger":
        if snapshot.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"unsupported snapshot version: {snapshot.get('version')!r}")
        ledger = cls(
            config,
            counter=counter,
            output_fn=output_fn,
            escrow=escrow,
            events=events,
            pool_id=str(snapshot["pool_id"]),
        )
        for wid, w in snapshot["windows"].items():
            state = window_from_dict(w)
            violations = check_all(state)
            if violations:
                raise InvariantViolation(violations)
            ledger._windows[int(wid)] = state
        for wid, rows in snapshot["intents"].items():
            ledger._intents[int(wid)] = [Intent.from_dict(r) for r in rows]
        ledger._submitted = {(str(owner), int(wid)) for owner, wid in snapshot["submitted"]}
        return ledger

    # -- internals -----------------------------------------------------------

    @contextmanager
    def _recorded(self, kind: EventKind, counter: int, args: Mapping[str, Any]) -> Iterator[None]:
        """Stage `kind`; publish it if the block completes, abort it otherwise."""
        event = self.events.stage(kind, counter=counter, pool_id=self.pool_id, args=args)
        try:
            yield
        except BaseException:
            self.events.abort(event)
            raise
        self.events.commit(event)

    @staticmethod
    def _check(post: WindowState) -> None:
        violations = check_all(post)
        if violations:
            raise InvariantViolation(violations)


__all__ = [
    "CounterSource",
    "IntentLedger",
    "LedgerConfig",
    "SubmitReceipt",
]
