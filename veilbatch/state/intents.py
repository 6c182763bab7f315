"""
Intent records.

An intent is a request to convert `amount_in` into at least `min_out`, deferred
to its window's batch settlement. Core fields are fixed at creation; `claimed`
is the single terminal flag, set once by either a claim or a cancel.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict, Optional

from .balances import Address, Amount


@unique
class Direction(Enum):
    """Swap direction within the pool pair."""
    ZERO_FOR_ONE = "zero_for_one"
    ONE_FOR_ZERO = "one_for_zero"

    @classmethod
    def from_flag(cls, zero_for_one: bool) -> "Direction":
        return cls.ZERO_FOR_ONE if zero_for_one else cls.ONE_FOR_ZERO


@unique
class Resolution(Enum):
    CLAIMED = "claimed"
    CANCELLED = "cancelled"


@dataclass
class Intent:
    """
    A queued intent.

    Attributes:
        owner: Identity that submitted the intent (only it may claim/cancel)
        recipient: Identity paid on claim
        amount_in: Escrowed input amount
        min_out: Minimum acceptable pro-rata output
        window_id: Owning window
        index: Per-window sequence number
        direction: Swap direction flag
        claimed: Terminal flag (claimed or cancelled)
        resolution: How the intent resolved, once terminal
        amount_out: Output paid on claim (0 otherwise)
    """
    owner: Address
    recipient: Address
    amount_in: Amount
    min_out: Amount
    window_id: int
    index: int
    direction: Direction = Direction.ZERO_FOR_ONE
    claimed: bool = False
    resolution: Optional[Resolution] = None
    amount_out: Amount = 0

    @property
    def is_terminal(self) -> bool:
        return self.claimed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "recipient": self.recipient,
            "amount_in": self.amount_in,
            "min_out": self.min_out,
            "window_id": self.window_id,
            "index": self.index,
            "direction": self.direction.value,
            "claimed": self.claimed,
            "resolution": self.resolution.value if self.resolution else None,
            "amount_out": self.amount_out,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Intent":
        resolution = d.get("resolution")
        return cls(
            owner=str(d["owner"]),
            recipient=str(d["recipient"]),
            amount_in=int(d["amount_in"]),
            min_out=int(d["min_out"]),
            window_id=int(d["window_id"]),
            index=int(d["index"]),
            direction=Direction(d["direction"]),
            claimed=bool(d["claimed"]),
            resolution=Resolution(resolution) if resolution else None,
            amount_out=int(d.get("amount_out", 0)),
        )
