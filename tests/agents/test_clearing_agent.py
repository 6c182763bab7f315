# [TESTER] v1

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import pytest

from veilbatch.agents.clearing_agent import AgentConfig, ClearingAgent
from veilbatch.agents.tracker import WindowPhase
from veilbatch.core.errors import TransientError
from veilbatch.core.ledger import IntentLedger, LedgerConfig
from veilbatch.core.settlement import IdentityOutput
from veilbatch.integration.chain import ManualCounter
from veilbatch.integration.ledger_client import ClearTicket, LocalLedgerClient
from veilbatch.state.balances import BalanceEscrow, BalanceTable


OWNERS = ["0x" + f"{i:02x}" * 20 for i in range(1, 9)]


def _make_ledger(*, start: int = 0, window_size: int = 10):
    counter = ManualCounter(0)
    balances = BalanceTable()
    for who in OWNERS:
        balances.set(who, "in", 1_000_000)
    ledger = IntentLedger(
        LedgerConfig(window_size=window_size, start_offset=start),
        counter=counter,
        output_fn=IdentityOutput(),
        escrow=BalanceEscrow(balances, asset_in="in", asset_out="out"),
    )
    return ledger, counter


async def _no_sleep(_delay: float) -> None:
    return None


def _agent(client, **overrides) -> ClearingAgent:
    cfg = AgentConfig(**{"poll_interval_s": 0.01, "max_retries": 2, **overrides})
    return ClearingAgent(client, cfg, sleep=_no_sleep)


class FlakyClient(LocalLedgerClient):
    """Fails `send_clear` a configurable number of times before delegating."""

    def __init__(self, ledger: IntentLedger, *, clear_failures: int = 0) -> None:
        super().__init__(ledger)
        self.clear_failures = clear_failures
        self.clear_calls = 0

    async def send_clear(self, window_id: int) -> ClearTicket:
        self.clear_calls += 1
        if self.clear_failures > 0:
            self.clear_failures -= 1
            raise TransientError("rpc timeout")
        return await super().send_clear(window_id)


class RacingClient(LocalLedgerClient):
    """Another clearer gets in between the agent's read and its write."""

    async def send_clear(self, window_id: int) -> ClearTicket:
        self.ledger.clear(window_id)
        return await super().send_clear(window_id)


def test_clears_ended_windows_and_skips_empty(caplog: pytest.LogCaptureFixture) -> None:
    ledger, counter = _make_ledger()
    client = LocalLedgerClient(ledger)
    agent = _agent(client)

    async def scenario():
        await agent.bootstrap()
        ledger.submit(OWNERS[0], 100)
        ledger.submit(OWNERS[1], 50)
        first = await agent.tick()
        counter.set(25)  # windows 0 and 1 ended, window 1 empty
        second = await agent.tick()
        agent.close()
        return first, second

    with caplog.at_level(logging.INFO, logger="veilbatch.agent"):
        first, second = asyncio.run(scenario())

    assert first.cleared == []
    assert second.current_window == 2
    assert second.cleared == [0]
    assert second.skipped == [1]
    assert ledger.window_state(0).cleared
    assert ledger.window_state(0).total_out == 150
    assert agent.tracker.snapshot_pending() == []
    assert agent.tracker.phase(1) is WindowPhase.SKIPPED_EMPTY

    text = caplog.text
    for tag in ("[bootstrap]", "[window-close] id=0", "[window-open] id=2", "[clear-sent] window=0",
                "[clear-mined] window=0", "[clear-skip] window=1 intentCount=0"):
        assert tag in text


def test_window_not_attempted_before_boundary() -> None:
    ledger, counter = _make_ledger()
    agent = _agent(LocalLedgerClient(ledger))

    async def scenario():
        await agent.bootstrap()
        ledger.submit(OWNERS[0], 10)
        counter.set(9)
        report = await agent.tick()
        agent.close()
        return report

    report = asyncio.run(scenario())
    assert report.cleared == []
    assert agent.tracker.snapshot_pending() == [0]
    assert not ledger.window_state(0).cleared


def test_live_subscription_feeds_tracker() -> None:
    ledger, _counter = _make_ledger()
    agent = _agent(LocalLedgerClient(ledger))

    asyncio.run(agent.bootstrap())
    ledger.submit(OWNERS[0], 10)
    ledger.submit(OWNERS[1], 10)
    assert agent.tracker.observed_count(0) == 2
    assert agent.tracker.snapshot_pending() == [0]
    agent.close()
    assert ledger.events.subscriber_count == 0


def test_lost_race_is_benign(caplog: pytest.LogCaptureFixture) -> None:
    ledger, counter = _make_ledger()
    agent = _agent(RacingClient(ledger))

    async def scenario():
        await agent.bootstrap()
        ledger.submit(OWNERS[0], 10)
        counter.set(10)
        report = await agent.tick()
        agent.close()
        return report

    with caplog.at_level(logging.INFO, logger="veilbatch.agent"):
        report = asyncio.run(scenario())
    assert report.skipped == [0]
    assert report.failed == []
    assert agent.tracker.is_cleared(0)
    assert "lostRace" in caplog.text


def test_exhausted_retries_keep_window_pending_until_next_tick() -> None:
    ledger, counter = _make_ledger()
    client = FlakyClient(ledger, clear_failures=3)
    agent = _agent(client, max_retries=2)

    async def scenario():
        await agent.bootstrap()
        ledger.submit(OWNERS[0], 10)
        counter.set(10)
        first = await agent.tick()
        second = await agent.tick()
        agent.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.failed == [0]
    assert client.clear_calls == 4  # three failed attempts, then success next tick
    assert second.cleared == [0]
    assert ledger.window_state(0).cleared


def test_oldest_first_and_per_tick_limit() -> None:
    ledger, counter = _make_ledger()
    agent = _agent(LocalLedgerClient(ledger), max_windows_per_tick=2)

    async def scenario():
        await agent.bootstrap()
        for w in range(4):
            ledger.submit(OWNERS[w], 10 + w)
            counter.advance(10)
        first = await agent.tick()
        second = await agent.tick()
        agent.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.cleared == [0, 1]
    assert second.cleared == [2, 3]


def test_restart_recovers_identical_pending_set() -> None:
    ledger, counter = _make_ledger()
    before = _agent(LocalLedgerClient(ledger), max_windows_per_tick=2)

    async def first_life():
        await before.bootstrap()
        for w in range(4):
            ledger.submit(OWNERS[w], 10)
            ledger.submit(OWNERS[w + 4], 5)
            counter.advance(10)
        await before.tick()
        before.close()

    asyncio.run(first_life())
    assert before.tracker.snapshot_pending() == [2, 3]

    after = _agent(LocalLedgerClient(ledger))

    async def second_life():
        await after.bootstrap()
        pending = after.tracker.snapshot_pending()
        report = await after.tick()
        after.close()
        return pending, report

    pending, report = asyncio.run(second_life())
    assert pending == before.tracker.snapshot_pending()
    assert after.tracker.observed_count(3) == 2
    assert report.cleared == [2, 3]
    assert all(ledger.window_state(w).cleared for w in range(4))


def test_bootstrap_lookback_bounds_replay() -> None:
    ledger, counter = _make_ledger()
    ledger.submit(OWNERS[0], 10)  # counter 0, window 0
    counter.set(100)
    ledger.submit(OWNERS[1], 10)  # window 10
    counter.set(150)

    agent = _agent(LocalLedgerClient(ledger), bootstrap_lookback=60)
    asyncio.run(agent.bootstrap())
    agent.close()
    assert agent.tracker.snapshot_pending() == [10]


def test_not_started_ledger_is_waited_on() -> None:
    ledger, counter = _make_ledger(start=50)
    agent = _agent(LocalLedgerClient(ledger))

    async def scenario():
        await agent.bootstrap()
        early = await agent.tick()
        counter.set(55)
        ledger.submit(OWNERS[0], 10)
        counter.set(60)
        late = await agent.tick()
        agent.close()
        return early, late

    early, late = asyncio.run(scenario())
    assert early.current_window is None
    assert late.current_window == 1
    assert late.cleared == [0]


def test_run_until_stopped_detaches_subscription(caplog: pytest.LogCaptureFixture) -> None:
    ledger, counter = _make_ledger()

    async def scenario() -> Optional[ClearingAgent]:
        agent = _agent(LocalLedgerClient(ledger))
        task = asyncio.create_task(agent.run())
        await asyncio.sleep(0.02)
        ledger.submit(OWNERS[0], 10)
        counter.set(10)
        for _ in range(100):
            if ledger.window_state(0).cleared:
                break
            await asyncio.sleep(0.01)
        agent.stop()
        await asyncio.wait_for(task, timeout=2)
        return agent

    with caplog.at_level(logging.INFO, logger="veilbatch.agent"):
        asyncio.run(scenario())
    assert ledger.window_state(0).cleared
    assert ledger.events.subscriber_count == 0
    assert "[agent-stop]" in caplog.text


def test_waits_before_start_and_logs_seen_intents(caplog: pytest.LogCaptureFixture) -> None:
    ledger, counter = _make_ledger(start=30)
    agent = _agent(LocalLedgerClient(ledger))

    async def scenario():
        await agent.bootstrap()
        await agent.tick()
        counter.set(30)
        ledger.submit(OWNERS[0], 10)
        ledger.submit(OWNERS[1], 20)
        counter.set(40)
        report = await agent.tick()
        agent.close()
        return report

    with caplog.at_level(logging.INFO, logger="veilbatch.agent"):
        report = asyncio.run(scenario())
    assert report.cleared == [0]
    text = caplog.text
    assert "[window-wait] counter=0 start=30 blocks_until_start=30" in text
    assert "[window-close] id=0 intents_seen=2" in text
    assert "intents=2 intents_seen=2" in text


def test_long_run_keeps_tracker_bounded() -> None:
    ledger, counter = _make_ledger()
    agent = _agent(LocalLedgerClient(ledger))

    async def scenario():
        await agent.bootstrap()
        for w in range(40):
            ledger.submit(OWNERS[w % len(OWNERS)], 10)
            counter.advance(10)
            await agent.tick()
        agent.close()

    asyncio.run(scenario())
    assert all(ledger.window_state(w).cleared for w in range(40))
    assert agent.tracker.snapshot_pending() == []
    assert agent.tracker.tracked_count() <= 2
