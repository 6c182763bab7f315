from __future__ import annotations

from pathlib import Path

import pytest

from veilbatch.core.errors import ConfigError, InvalidWindowSize
from veilbatch.integration.config import load_settings


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "veilbatch.yaml"
    p.write_text(text, encoding="utf-8")
    return p


def test_defaults_without_file_or_env() -> None:
    s = load_settings(env={})
    assert s.ledger.window_size == 10
    assert s.ledger.cancel_enabled is True
    assert s.agent.poll_interval_s == 4.0
    assert s.agent.backoff_base_s == 1.0
    assert s.agent.backoff_max_s == 16.0
    assert s.agent.max_retries == 3
    assert s.agent.max_windows_per_tick == 16
    assert s.agent.bootstrap_lookback == 5000
    assert s.pool_id == "default"


def test_yaml_overrides_defaults_and_env_overrides_yaml(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
pool_id: eth-usdc
ledger:
  window_size: 20
  min_amount_in: 5
  cancel_enabled: false
agent:
  poll_interval_s: 2
  max_retries: 5
""",
    )
    env = {
        "VEILBATCH_LEDGER_WINDOW_SIZE": "30",
        "VEILBATCH_AGENT_BACKOFF_MAX_S": "8.5",
        "VEILBATCH_LEDGER_CANCEL_ENABLED": "yes",
        "VEILBATCH_LOG_LEVEL": "debug",
    }
    s = load_settings(path, env=env)
    assert s.pool_id == "eth-usdc"
    assert s.ledger.window_size == 30
    assert s.ledger.min_amount_in == 5
    assert s.ledger.cancel_enabled is True
    assert s.agent.poll_interval_s == 2.0
    assert s.agent.max_retries == 5
    assert s.agent.backoff_max_s == 8.5
    assert s.log_level == "DEBUG"
    assert s.agent.backoff_policy().max_attempts == 6


def test_config_path_from_env(tmp_path: Path) -> None:
    path = _write(tmp_path, "ledger:\n  start_offset: 1000\n")
    s = load_settings(env={"VEILBATCH_CONFIG": str(path)})
    assert s.ledger.start_offset == 1000


def test_zero_window_size_fails_at_load(tmp_path: Path) -> None:
    with pytest.raises(InvalidWindowSize):
        load_settings(_write(tmp_path, "ledger:\n  window_size: 0\n"), env={})
    with pytest.raises(InvalidWindowSize):
        load_settings(env={"VEILBATCH_LEDGER_WINDOW_SIZE": "0"})


@pytest.mark.parametrize(
    "text",
    [
        "ledger:\n  max_intents_per_window: 0\n",
        "ledger:\n  window_size: ten\n",
        "ledger:\n  bogus: 1\n",
        "agent:\n  poll_interval_s: 0\n",
        "agent: [1, 2]\n",
        "surprise: 1\n",
        "- just\n- a list\n",
        "ledger: {window_size: [\n",
    ],
)
def test_invalid_yaml_values_raise_config_error(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigError):
        load_settings(_write(tmp_path, text), env={})


def test_invalid_env_values_raise_config_error() -> None:
    with pytest.raises(ConfigError):
        load_settings(env={"VEILBATCH_AGENT_MAX_RETRIES": "many"})
    with pytest.raises(ConfigError):
        load_settings(env={"VEILBATCH_LEDGER_CANCEL_ENABLED": "maybe"})
