"""
Runtime settings.

Sources, lowest to highest precedence:
- built-in defaults,
- an optional YAML file with `ledger:` and `agent:` sections,
- `VEILBATCH_*` environment variables.

Invalid values raise `ConfigError` at load time; nothing is clamped silently.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..agents.clearing_agent import AgentConfig
from ..core.errors import ConfigError
from ..core.ledger import LedgerConfig


ENV_PREFIX = "VEILBATCH_"


@dataclass(frozen=True)
class Settings:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    pool_id: str = "default"
    log_level: str = "INFO"


def _env_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip(), 10)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(env: Mapping[str, str], name: str) -> Optional[bool]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(name)
    if raw is None:
        return None
    v = raw.strip()
    return v if v else None


_READERS = {int: _env_int, float: _env_float, bool: _env_bool, str: _env_str}


def _field_types(cls: type) -> Dict[str, type]:
    # Annotations are strings under postponed evaluation; map them back.
    names = {"int": int, "float": float, "bool": bool, "str": str}
    return {f.name: names[f.type] for f in fields(cls) if f.type in names}


def _section_overrides(section: Any, cls: type, *, name: str) -> Dict[str, Any]:
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"config section {name!r} must be a mapping")
    known = _field_types(cls)
    out: Dict[str, Any] = {}
    for key, value in section.items():
        if key not in known:
            raise ConfigError(f"unknown key {name}.{key}")
        expected = known[key]
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        if expected is not bool and isinstance(value, bool):
            raise ConfigError(f"{name}.{key} must be {expected.__name__}, got bool")
        if not isinstance(value, expected):
            raise ConfigError(f"{name}.{key} must be {expected.__name__}, got {type(value).__name__}")
        out[key] = value
    return out


def _env_overrides(env: Mapping[str, str], cls: type, *, section: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, typ in _field_types(cls).items():
        value = _READERS[typ](env, f"{ENV_PREFIX}{section.upper()}_{key.upper()}")
        if value is not None:
            out[key] = value
    return out


def load_yaml(path: Path) -> Mapping[str, Any]:
    try:
        obj = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    if obj is None:
        return {}
    if not isinstance(obj, Mapping):
        raise ConfigError(f"{path}: config root must be a mapping")
    unknown = set(obj) - {"ledger", "agent", "pool_id", "log_level"}
    if unknown:
        raise ConfigError(f"{path}: unknown top-level keys: {sorted(unknown)}")
    return obj


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build `Settings` from defaults, an optional YAML file and the environment.

    `VEILBATCH_CONFIG` names the YAML file when `path` is not given.
    """
    env = os.environ if env is None else env
    if path is None:
        env_path = _env_str(env, f"{ENV_PREFIX}CONFIG")
        path = Path(env_path) if env_path else None

    doc: Mapping[str, Any] = load_yaml(Path(path)) if path is not None else {}

    ledger_kwargs = _section_overrides(doc.get("ledger"), LedgerConfig, name="ledger")
    ledger_kwargs.update(_env_overrides(env, LedgerConfig, section="ledger"))
    agent_kwargs = _section_overrides(doc.get("agent"), AgentConfig, name="agent")
    agent_kwargs.update(_env_overrides(env, AgentConfig, section="agent"))

    settings = Settings(
        ledger=replace(LedgerConfig(), **ledger_kwargs),
        agent=replace(AgentConfig(), **agent_kwargs),
    )
    pool_id = _env_str(env, f"{ENV_PREFIX}POOL_ID") or doc.get("pool_id")
    log_level = _env_str(env, f"{ENV_PREFIX}LOG_LEVEL") or doc.get("log_level")
    if pool_id is not None:
        settings = replace(settings, pool_id=str(pool_id))
    if log_level is not None:
        settings = replace(settings, log_level=str(log_level).upper())
    return settings
