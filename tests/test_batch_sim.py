from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _restore_veilbatch_logger():
    logger = logging.getLogger("veilbatch")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    for h in logger.handlers:
        if h not in handlers:
            h.close()
    logger.handlers[:] = handlers
    logger.propagate = propagate
    logger.setLevel(level)


@pytest.mark.parametrize("output", ["identity", "fixed", "cpmm"])
def test_simulate_drains_vault(output: str, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    from tools.batch_sim import main

    monkeypatch.delenv("VEILBATCH_CONFIG", raising=False)
    rc = main(["--output", output, "--participants", "4", "--seed", "3", "simulate", "--windows", "6"])
    out = capsys.readouterr().out
    assert rc == 0
    assert "[sim] OK" in out

    summary = json.loads(out[out.index("{"): out.rindex("}") + 1])
    assert summary["vault_in"] == 0
    assert summary["vault_out"] == 0
    assert summary["pending_after"] == []
    assert summary["rejected"] == 0


def test_simulate_writes_replayable_journal(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    from tools.batch_sim import main
    from veilbatch.state.events import EventKind, EventLog

    monkeypatch.delenv("VEILBATCH_CONFIG", raising=False)
    journal = tmp_path / "events.jsonl"
    assert main(["--journal", str(journal), "simulate", "--windows", "3", "--participation", "1.0"]) == 0
    capsys.readouterr()

    log = EventLog(journal)
    kinds = [e.kind for e in log.read()]
    assert kinds.count(EventKind.QUEUED) == 15
    assert kinds.count(EventKind.CLEARED) == 3
    assert kinds.count(EventKind.DUST_SWEPT) == 3
