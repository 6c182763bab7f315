"""
Window settlement math (deterministic, integer-only).

One rounding rule for the whole system: each intent's share is

    amount_out = floor(total_out * amount_in / total_in)

so `sum(amount_out) <= total_out` for any set of claims, and the remainder
(`total_out - claimed_out_sum`) is the window's dust.

The output function that turns a window's aggregate input into its aggregate
output is an injected collaborator. The implementations here are small
reference curves; the settlement algorithm is correct for any monotone,
non-negative implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


BPS_DENOM = 10_000

# uint128, the domain of per-intent amounts.
MAX_AMOUNT = (1 << 128) - 1


def _require_int(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")


def pro_rata_share(total_out: int, amount_in: int, total_in: int) -> int:
    """Floor-rounded share of `total_out` owed to an intent of size `amount_in`."""
    for name, v in (("total_out", total_out), ("amount_in", amount_in), ("total_in", total_in)):
        _require_int(name, v)
        if v < 0:
            raise ValueError(f"{name} must be non-negative: {v}")
    if total_in == 0:
        raise ValueError("total_in must be positive")
    if amount_in > total_in:
        raise ValueError(f"amount_in exceeds total_in: {amount_in} > {total_in}")
    return (total_out * amount_in) // total_in


def dust(total_out: int, claimed_out_sum: int) -> int:
    """Rounding remainder left after claims. Negative means broken accounting."""
    return total_out - claimed_out_sum


@runtime_checkable
class OutputFunction(Protocol):
    def compute_window_output(self, window_id: int, total_in: int) -> int:
        ...


@dataclass(frozen=True)
class IdentityOutput:
    """Returns the input unchanged (placeholder execution)."""

    def compute_window_output(self, window_id: int, total_in: int) -> int:
        return total_in


@dataclass(frozen=True)
class FixedRateOutput:
    """`floor(total_in * numerator / denominator)`."""

    numerator: int
    denominator: int

    def __post_init__(self) -> None:
        _require_int("numerator", self.numerator)
        _require_int("denominator", self.denominator)
        if self.numerator < 0:
            raise ValueError(f"numerator must be non-negative: {self.numerator}")
        if self.denominator <= 0:
            raise ValueError(f"denominator must be positive: {self.denominator}")

    def compute_window_output(self, window_id: int, total_in: int) -> int:
        return (total_in * self.numerator) // self.denominator


def _ceil_div_nonneg(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        raise ValueError("numerator must be non-negative")
    return (numerator + denominator - 1) // denominator


@dataclass(frozen=True)
class ConstantProductOutput:
    """
    Quote a window's aggregate input against fixed CPMM reserves.

        fee = ceil(total_in * fee_bps / 10_000)
        net_in = total_in - fee
        total_out = floor(reserve_out * net_in / (reserve_in + net_in))

    Reserves are not mutated: every window is quoted against the same curve,
    which keeps the function pure and monotone in `total_in`.
    """

    reserve_in: int
    reserve_out: int
    fee_bps: int = 30

    def __post_init__(self) -> None:
        for name, v in (
            ("reserve_in", self.reserve_in),
            ("reserve_out", self.reserve_out),
            ("fee_bps", self.fee_bps),
        ):
            _require_int(name, v)
        if self.reserve_in <= 0 or self.reserve_out <= 0:
            raise ValueError("reserves must be positive")
        if not (0 <= self.fee_bps < BPS_DENOM):
            raise ValueError(f"fee_bps must be in [0, {BPS_DENOM})")

    def compute_window_output(self, window_id: int, total_in: int) -> int:
        if total_in <= 0:
            return 0
        fee = _ceil_div_nonneg(total_in * self.fee_bps, BPS_DENOM)
        net_in = total_in - fee
        if net_in <= 0:
            return 0
        return (self.reserve_out * net_in) // (self.reserve_in + net_in)
