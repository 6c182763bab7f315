"""
Ledger transport used by the clearing agent.

The agent only ever talks to the ledger through `LedgerClient`, an async
interface shaped like a chain RPC: reads, a clear transaction, a receipt wait,
historical log queries and a live log subscription. `LocalLedgerClient`
adapts an in-process `IntentLedger`.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from ..core.errors import TransientError
from ..core.ledger import IntentLedger
from ..state.events import EventKind, LedgerEvent
from ..state.windows import WindowState


EventHandler = Callable[[List[LedgerEvent]], None]
Unwatch = Callable[[], None]


@dataclass(frozen=True)
class ClearTicket:
    """Handle for a submitted clear, redeemed with `wait_for_commit`."""

    tx_id: str
    window_id: int


@dataclass(frozen=True)
class CommitReceipt:
    tx_id: str
    window_id: int
    counter: int
    total_out: int


class LedgerClient(Protocol):
    async def read_start(self) -> int:
        ...

    async def read_window_size(self) -> int:
        ...

    async def current_counter(self) -> int:
        ...

    async def window_state(self, window_id: int) -> WindowState:
        ...

    async def send_clear(self, window_id: int) -> ClearTicket:
        ...

    async def wait_for_commit(self, ticket: ClearTicket) -> CommitReceipt:
        ...

    async def queued_events(self, from_counter: int, to_counter: Optional[int] = None) -> List[LedgerEvent]:
        ...

    async def cleared_events(self, from_counter: int, to_counter: Optional[int] = None) -> List[LedgerEvent]:
        ...

    def watch(self, on_queued: EventHandler, on_cleared: EventHandler) -> Unwatch:
        ...


class LocalLedgerClient:
    """
    `LedgerClient` over an in-process ledger.

    `send_clear` executes the clear immediately; `wait_for_commit` returns the
    stored receipt. Ledger errors propagate unchanged.
    """

    def __init__(self, ledger: IntentLedger) -> None:
        self.ledger = ledger
        self._receipts: Dict[str, CommitReceipt] = {}
        self._tx_seq = itertools.count(1)

    async def read_start(self) -> int:
        return self.ledger.clock.start

    async def read_window_size(self) -> int:
        return self.ledger.clock.window_size

    async def current_counter(self) -> int:
        return self.ledger.current_counter()

    async def window_state(self, window_id: int) -> WindowState:
        return self.ledger.window_state(window_id)

    async def send_clear(self, window_id: int) -> ClearTicket:
        post = self.ledger.clear(window_id)
        tx_id = f"0x{next(self._tx_seq):064x}"
        self._receipts[tx_id] = CommitReceipt(
            tx_id=tx_id,
            window_id=window_id,
            counter=self.ledger.current_counter(),
            total_out=post.total_out,
        )
        await asyncio.sleep(0)
        return ClearTicket(tx_id=tx_id, window_id=window_id)

    async def wait_for_commit(self, ticket: ClearTicket) -> CommitReceipt:
        receipt = self._receipts.pop(ticket.tx_id, None)
        if receipt is None:
            raise TransientError(f"no receipt for {ticket.tx_id}")
        return receipt

    async def queued_events(self, from_counter: int, to_counter: Optional[int] = None) -> List[LedgerEvent]:
        return self.ledger.events.read_by_counter(
            kinds=[EventKind.QUEUED], from_counter=from_counter, to_counter=to_counter
        )

    async def cleared_events(self, from_counter: int, to_counter: Optional[int] = None) -> List[LedgerEvent]:
        return self.ledger.events.read_by_counter(
            kinds=[EventKind.CLEARED], from_counter=from_counter, to_counter=to_counter
        )

    def watch(self, on_queued: EventHandler, on_cleared: EventHandler) -> Unwatch:
        unsubs = [
            self.ledger.events.subscribe(on_queued, kinds=[EventKind.QUEUED]),
            self.ledger.events.subscribe(on_cleared, kinds=[EventKind.CLEARED]),
        ]

        def unwatch() -> None:
            for unsub in unsubs:
                unsub()

        return unwatch
