"""
Retry-with-backoff for the clearing agent's external calls.

Every read and write the agent makes against the ledger transport goes through
`with_backoff`. Infrastructure failures are retried with exponential delay;
ledger rejections (`LedgerError`) are deterministic and re-raised at once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.errors import ConfigError, LedgerError, RetryExhaustedError


T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

_default_log = logging.getLogger("veilbatch.agent")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff schedule.

    Attempt `k` (0-based) that fails waits `min(base_delay * multiplier**k,
    max_delay)` seconds before the next one. `max_retries` retries means at most
    `max_retries + 1` attempts in total.
    """

    base_delay: float = 1.0
    max_delay: float = 16.0
    multiplier: float = 2.0
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigError("backoff delays must be non-negative")
        if self.multiplier < 1:
            raise ConfigError("backoff multiplier must be >= 1")
        if not isinstance(self.max_retries, int) or isinstance(self.max_retries, bool) or self.max_retries < 0:
            raise ConfigError("max_retries must be a non-negative int")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delays(self) -> list[float]:
        """The sleep before each retry, in order."""
        out: list[float] = []
        delay = self.base_delay
        for _ in range(self.max_retries):
            out.append(min(delay, self.max_delay))
            delay = min(delay * self.multiplier, self.max_delay)
        return out


async def with_backoff(
    label: str,
    action: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Run `action` until it succeeds or the policy's retries are used up.

    Raises:
        LedgerError: the first ledger rejection, unchanged.
        RetryExhaustedError: after `policy.max_attempts` failures, chained to the last one.
    """
    log = logger or _default_log
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await action()
        except LedgerError:
            raise
        except Exception as exc:
            if attempt > policy.max_retries:
                raise RetryExhaustedError(label, attempt) from exc
            delay = delays[attempt - 1]
            log.warning(
                "[rpc-backoff] %s failed (attempt %d/%d), retry in %.3fs: %s",
                label,
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            await sleep(delay)
