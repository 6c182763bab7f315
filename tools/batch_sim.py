#!/usr/bin/env python3
"""
Offline batch-settlement simulation.

  simulate  deterministic run: random intents over N windows, the clearing
            agent ticking once per window, then every claim and the dust
            sweeps; prints a JSON summary and checks value conservation.
  serve     runs the clearing agent loop against a live in-process ledger whose
            block height advances on a timer; stops on SIGINT/SIGTERM or after
            --duration seconds.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from veilbatch.agents.clearing_agent import ClearingAgent, install_signal_handlers
from veilbatch.core.errors import LedgerError
from veilbatch.core.ledger import IntentLedger
from veilbatch.core.settlement import ConstantProductOutput, FixedRateOutput, IdentityOutput, OutputFunction
from veilbatch.integration.chain import ManualCounter
from veilbatch.integration.config import Settings, load_settings
from veilbatch.integration.ledger_client import LocalLedgerClient
from veilbatch.integration.logs import configure_logging
from veilbatch.state.balances import BalanceEscrow, BalanceTable
from veilbatch.state.events import EventLog


ASSET_IN = "asset0"
ASSET_OUT = "asset1"
DUST_SINK = "treasury"


def _output_fn(name: str) -> OutputFunction:
    if name == "identity":
        return IdentityOutput()
    if name == "fixed":
        return FixedRateOutput(numerator=3, denominator=7)
    if name == "cpmm":
        return ConstantProductOutput(reserve_in=1_000_000, reserve_out=2_000_000, fee_bps=30)
    raise ValueError(f"unknown output function: {name}")


def _build(settings: Settings, *, output: str, journal: Optional[Path], participants: List[str], funding: int):
    counter = ManualCounter(settings.ledger.start_offset)
    balances = BalanceTable()
    for who in participants:
        balances.set(who, ASSET_IN, funding)
    escrow = BalanceEscrow(balances, asset_in=ASSET_IN, asset_out=ASSET_OUT)
    ledger = IntentLedger(
        settings.ledger,
        counter=counter,
        output_fn=_output_fn(output),
        escrow=escrow,
        events=EventLog(journal),
        pool_id=settings.pool_id,
    )
    return counter, balances, escrow, ledger


async def _simulate(args: argparse.Namespace, settings: Settings) -> int:
    rng = random.Random(args.seed)
    participants = [f"0x{i + 1:040x}" for i in range(args.participants)]
    counter, balances, escrow, ledger = _build(
        settings, output=args.output, journal=args.journal, participants=participants, funding=args.funding
    )
    agent = ClearingAgent(LocalLedgerClient(ledger), settings.agent)
    await agent.bootstrap()

    window_size = settings.ledger.window_size
    rejected = 0
    for _ in range(args.windows):
        for who in participants:
            if rng.random() >= args.participation:
                continue
            try:
                ledger.submit(who, rng.randint(1, args.max_amount))
            except LedgerError as exc:
                rejected += 1
                print(f"[sim] submit rejected owner={who}: {exc}")
        counter.advance(window_size)
        await agent.tick()
    await agent.tick()

    claimed = 0
    dust_total = 0
    for window_id in ledger.known_windows():
        state = ledger.window_state(window_id)
        if not state.cleared:
            continue
        for intent in ledger.intents_in_window(window_id):
            if not intent.claimed:
                claimed += ledger.claim(window_id, intent.index, intent.owner)
        dust_total += ledger.sweep_dust(window_id, DUST_SINK)
    agent.close()

    vault_in = balances.get(escrow.vault, ASSET_IN)
    vault_out = balances.get(escrow.vault, ASSET_OUT)
    summary: Dict[str, Any] = {
        "windows": len(ledger.known_windows()),
        "events": len(ledger.events),
        "claimed_out": claimed,
        "dust": dust_total,
        "rejected": rejected,
        "pending_after": agent.tracker.snapshot_pending(),
        "vault_in": vault_in,
        "vault_out": vault_out,
    }
    print(json.dumps(summary, indent=2, sort_keys=True))
    if vault_in != 0 or vault_out != 0:
        print("[sim] FAIL: vault not drained")
        return 1
    print("[sim] OK")
    return 0


async def _serve(args: argparse.Namespace, settings: Settings) -> int:
    rng = random.Random(args.seed)
    participants = [f"0x{i + 1:040x}" for i in range(args.participants)]
    counter, _balances, _escrow, ledger = _build(
        settings, output=args.output, journal=args.journal, participants=participants, funding=args.funding
    )
    agent = ClearingAgent(LocalLedgerClient(ledger), settings.agent)
    install_signal_handlers(agent)

    async def produce_blocks() -> None:
        while not agent.stopping:
            await asyncio.sleep(args.block_time)
            counter.advance(1)
            who = rng.choice(participants)
            try:
                ledger.submit(who, rng.randint(1, args.max_amount))
            except LedgerError:
                pass

    async def stop_later() -> None:
        await asyncio.sleep(args.duration)
        agent.stop()

    tasks = [asyncio.create_task(produce_blocks())]
    if args.duration > 0:
        tasks.append(asyncio.create_task(stop_later()))
    try:
        await agent.run()
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="VeilBatch offline simulation")
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--output", choices=["identity", "fixed", "cpmm"], default="identity")
    parser.add_argument("--journal", type=Path, default=None, help="Event journal (JSON lines)")
    parser.add_argument("--participants", type=int, default=5)
    parser.add_argument("--funding", type=int, default=1_000_000)
    parser.add_argument("--max-amount", type=int, default=1_000)
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sim = sub.add_parser("simulate", help="Deterministic multi-window run")
    p_sim.add_argument("--windows", type=int, default=10)
    p_sim.add_argument("--participation", type=float, default=0.7)

    p_serve = sub.add_parser("serve", help="Run the clearing agent loop")
    p_serve.add_argument("--block-time", type=float, default=0.5, help="Seconds per block")
    p_serve.add_argument("--duration", type=float, default=0.0, help="Stop after N seconds (0 = until signal)")

    args = parser.parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(args.log_level or settings.log_level)

    if args.cmd == "simulate":
        return asyncio.run(_simulate(args, settings))
    return asyncio.run(_serve(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
