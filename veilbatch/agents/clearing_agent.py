"""
Clearing agent.

Nobody profits from calling `clear`, so this loop makes sure every ended,
non-empty window eventually gets cleared:

- on startup it replays recent Queued/Cleared notifications into a
  `WindowTracker` and subscribes to live ones,
- every tick it marks windows that have just ended as pending and attempts up
  to `max_windows_per_tick` of them, oldest first,
- every external call goes through `with_backoff`; a lost race (`AlreadyCleared`)
  counts as success, any other failure leaves the window pending for the next
  tick.

Tracking state is a cache. The ledger's own window state decides what to do.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

from ..core.errors import AlreadyCleared, ConfigError, NotStarted
from ..core.window_clock import WindowClock
from ..integration.ledger_client import LedgerClient
from ..state.events import LedgerEvent
from .backoff import BackoffPolicy, Sleep, with_backoff
from .tracker import WindowTracker


T = TypeVar("T")

log = logging.getLogger("veilbatch.agent")


@dataclass(frozen=True)
class AgentConfig:
    """Clearing agent knobs."""

    poll_interval_s: float = 4.0
    backoff_base_s: float = 1.0
    backoff_max_s: float = 16.0
    backoff_multiplier: float = 2.0
    max_retries: int = 3
    max_windows_per_tick: int = 16
    bootstrap_lookback: int = 5000

    def __post_init__(self) -> None:
        if self.poll_interval_s <= 0:
            raise ConfigError("poll_interval_s must be positive")
        if self.max_windows_per_tick <= 0:
            raise ConfigError("max_windows_per_tick must be positive")
        if self.bootstrap_lookback < 0:
            raise ConfigError("bootstrap_lookback must be non-negative")
        self.backoff_policy()

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=self.backoff_base_s,
            max_delay=self.backoff_max_s,
            multiplier=self.backoff_multiplier,
            max_retries=self.max_retries,
        )


@dataclass
class TickReport:
    """What one tick did, by window id."""

    current_window: Optional[int] = None
    cleared: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class ClearingAgent:
    def __init__(
        self,
        client: LedgerClient,
        config: Optional[AgentConfig] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config or AgentConfig()
        self.policy = self.config.backoff_policy()
        self.tracker = WindowTracker()
        self._sleep = sleep
        self._clock: Optional[WindowClock] = None
        self._last_seen: Optional[int] = None
        self._unwatch: Optional[Callable[[], None]] = None
        self._stop = asyncio.Event()

    # -- lifecycle -------------------------------------------------------------

    async def bootstrap(self) -> None:
        """Read ledger parameters, replay recent notifications and start watching."""
        start, window_size, latest = await asyncio.gather(
            self._call("read-start", self.client.read_start),
            self._call("read-window-size", self.client.read_window_size),
            self._call("current-counter", self.client.current_counter),
        )
        self._clock = WindowClock(start=start, window_size=window_size)

        # Subscribe before replaying so nothing falls between the two; the
        # tracker ignores duplicates.
        self._unwatch = self.client.watch(self._on_queued, self._on_cleared)

        from_counter = max(latest - self.config.bootstrap_lookback, 0)
        queued, cleared = await asyncio.gather(
            self._call("queued-logs", lambda: self.client.queued_events(from_counter, latest)),
            self._call("cleared-logs", lambda: self.client.cleared_events(from_counter, latest)),
        )
        self.tracker.replay(
            ((e.window_id, int(e.args["intent_index"])) for e in queued),
            (e.window_id for e in cleared),
        )
        self._last_seen = self._window_at(latest)
        log.info(
            "[bootstrap] start=%d window_size=%d latest=%d from=%d queued=%d cleared=%d pending=%s",
            start,
            window_size,
            latest,
            from_counter,
            len(queued),
            len(cleared),
            self.tracker.snapshot_pending(),
        )
        if self._last_seen is None:
            self._log_wait(latest)
        else:
            log.info(
                "[window-open] id=%d blocks_left=%d",
                self._last_seen,
                self._clock.blocks_remaining(latest),
            )

    async def run(self) -> None:
        """Bootstrap, then tick every poll interval until `stop()` is called."""
        await self.bootstrap()
        try:
            while not self._stop.is_set():
                try:
                    await self.tick()
                except Exception as exc:
                    log.error("[loop-error] %s", exc, exc_info=True)
                await self._wait_poll()
        finally:
            self._detach()
            log.info("[agent-stop] pending=%s", self.tracker.snapshot_pending())

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        """Detach the live subscription without running the loop."""
        self._detach()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    # -- one iteration ---------------------------------------------------------

    async def tick(self) -> TickReport:
        if self._clock is None:
            raise RuntimeError("bootstrap() must run before tick()")
        report = TickReport()
        counter = await self._call("current-counter", self.client.current_counter)
        current = self._window_at(counter)
        if current is None:
            self._log_wait(counter)
            return report
        report.current_window = current

        previous = self._last_seen
        if previous is None or current > previous:
            # No previous window: the ledger started unobserved, so all earlier windows ended.
            first = 0 if previous is None else previous
            if previous is not None:
                self.tracker.prune_finished(previous)
            for window_id in range(first, current):
                log.info("[window-close] id=%d intents_seen=%d", window_id, self.tracker.observed_count(window_id))
            self.tracker.mark_range_ended(first, current)
            self._last_seen = current
            log.info("[window-open] id=%d blocks_left=%d", current, self._clock.blocks_remaining(counter))

        for window_id in self.tracker.next_batch(current, self.config.max_windows_per_tick):
            if self._stop.is_set():
                break
            await self._process_window(window_id, report)
        return report

    async def _process_window(self, window_id: int, report: TickReport) -> None:
        try:
            state = await self._call(f"window-state:{window_id}", lambda: self.client.window_state(window_id))
            if state.cleared:
                self.tracker.note_cleared(window_id)
                report.skipped.append(window_id)
                log.info("[clear-skip] window=%d alreadyCleared", window_id)
                return
            if state.intent_count == 0:
                self.tracker.note_empty(window_id)
                report.skipped.append(window_id)
                log.info("[clear-skip] window=%d intentCount=0", window_id)
                return

            self.tracker.note_attempted(window_id)
            ticket = await self._call(f"clear:{window_id}", lambda: self.client.send_clear(window_id))
            log.info(
                "[clear-sent] window=%d tx=%s intents=%d intents_seen=%d",
                window_id,
                ticket.tx_id,
                state.intent_count,
                self.tracker.observed_count(window_id),
            )
            receipt = await self._call(f"receipt:{window_id}", lambda: self.client.wait_for_commit(ticket))
            self.tracker.note_cleared(window_id)
            report.cleared.append(window_id)
            log.info(
                "[clear-mined] window=%d tx=%s counter=%d total_out=%d",
                window_id,
                receipt.tx_id,
                receipt.counter,
                receipt.total_out,
            )
        except AlreadyCleared:
            self.tracker.note_cleared(window_id)
            report.skipped.append(window_id)
            log.info("[clear-skip] window=%d lostRace", window_id)
        except Exception as exc:
            report.failed.append(window_id)
            log.warning("[clear-error] window=%d %s: %s", window_id, type(exc).__name__, exc)

    # -- helpers ---------------------------------------------------------------

    def _window_at(self, counter: int) -> Optional[int]:
        assert self._clock is not None
        try:
            return self._clock.window_id(counter)
        except NotStarted:
            return None

    def _log_wait(self, counter: int) -> None:
        assert self._clock is not None
        log.info(
            "[window-wait] counter=%d start=%d blocks_until_start=%d",
            counter,
            self._clock.start,
            self._clock.start - counter,
        )

    async def _call(self, label: str, action: Callable[[], Awaitable[T]]) -> T:
        return await with_backoff(label, action, self.policy, sleep=self._sleep, logger=log)

    async def _wait_poll(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.config.poll_interval_s)
        except asyncio.TimeoutError:
            pass

    def _detach(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None

    def _on_queued(self, events: List[LedgerEvent]) -> None:
        for e in events:
            self.tracker.note_queued(e.window_id, int(e.args["intent_index"]))

    def _on_cleared(self, events: List[LedgerEvent]) -> None:
        for e in events:
            self.tracker.note_cleared(e.window_id)


def install_signal_handlers(agent: ClearingAgent, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    """Stop the agent on SIGINT/SIGTERM (no-op where the loop has no signal support)."""
    loop = loop or asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.stop)
        except (NotImplementedError, RuntimeError):
            log.debug("signal handlers unavailable for %s", sig)
