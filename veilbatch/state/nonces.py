"""
Nonce table for replay protection of signed participant requests.

We track, per identity, the last accepted request nonce. Policy (currently:
strictly sequential nonces) is enforced by `integration.gateway`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping

from .balances import Address


@dataclass
class NonceTable:
    """Mutable mapping: identity -> last_used_nonce."""

    _last: Dict[Address, int] = field(default_factory=dict)

    def get_last(self, address: Address) -> int:
        v = self._last.get(address.lower(), 0)
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise ValueError(f"invalid stored nonce for {address!r}: {v!r}")
        return int(v)

    def set_last(self, address: Address, last_nonce: int) -> None:
        if not isinstance(last_nonce, int) or isinstance(last_nonce, bool) or last_nonce < 0:
            raise TypeError("last_nonce must be a non-negative int")
        if last_nonce > 0xFFFFFFFFFFFFFFFF:
            raise TypeError("last_nonce must fit in u64")
        self._last[address.lower()] = int(last_nonce)

    def get_all(self) -> Mapping[Address, int]:
        # Shallow copy to avoid accidental mutation during iteration.
        return dict(self._last)
