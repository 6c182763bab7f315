"""Precondition checks for ledger operations.

One function per operation. Each inspects the PRE-state and raises the typed
error for the first failing condition; returning normally means the operation
may proceed. Checks are ordered exactly as callers observe them.
"""

from __future__ import annotations

from typing import Optional, Sequence

from ..state.balances import Address, is_zero_address
from ..state.intents import Intent
from ..state.windows import WindowState
from .errors import (
    AlreadyClaimed,
    AlreadyCleared,
    AmountOutOfRange,
    AmountTooSmall,
    CancelDelayNotElapsed,
    CancelDisabled,
    DuplicateInWindow,
    DustAlreadySwept,
    InvalidIntent,
    NotCleared,
    NotEnded,
    RecipientZero,
    Unauthorized,
    UnknownWindow,
    WindowFull,
    WindowNotSettled,
)
from .settlement import MAX_AMOUNT
from .window_clock import WindowClock


def _require_amount(name: str, value: object) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0 or value > MAX_AMOUNT:
        raise AmountOutOfRange(name, value)
    return value


def guard_submit_args(
    *,
    amount_in: int,
    min_out: int,
    recipient: Optional[Address],
    min_amount_in: int,
) -> None:
    _require_amount("amount_in", amount_in)
    _require_amount("min_out", min_out)
    if amount_in <= min_amount_in:
        raise AmountTooSmall(amount_in, min_amount_in)
    if is_zero_address(recipient):
        raise RecipientZero("recipient must be a non-zero identity")


def guard_submit(
    window: WindowState,
    *,
    window_id: int,
    owner: Address,
    max_intents: int,
    already_submitted: bool,
) -> None:
    if window.intent_count >= max_intents:
        raise WindowFull(window_id, max_intents)
    if already_submitted:
        raise DuplicateInWindow(owner, window_id)


def guard_clear(window: WindowState, *, window_id: int, clock: WindowClock, counter: int) -> None:
    if not window.exists:
        raise UnknownWindow(window_id)
    if window.cleared:
        raise AlreadyCleared(window_id)
    end = clock.window_end_exclusive(window_id)
    if counter < end:
        raise NotEnded(counter, end)


def lookup_intent(intents: Sequence[Intent], *, window_id: int, intent_index: int) -> Intent:
    if (
        not isinstance(intent_index, int)
        or isinstance(intent_index, bool)
        or intent_index < 0
        or intent_index >= len(intents)
    ):
        raise InvalidIntent(window_id, intent_index)
    return intents[intent_index]


def guard_claim(
    window: WindowState,
    intents: Sequence[Intent],
    *,
    window_id: int,
    intent_index: int,
    caller: Address,
) -> Intent:
    if not window.cleared:
        raise NotCleared(window_id)
    intent = lookup_intent(intents, window_id=window_id, intent_index=intent_index)
    if intent.owner != caller:
        raise Unauthorized(caller)
    if intent.claimed:
        raise AlreadyClaimed(window_id, intent_index)
    return intent


def guard_cancel(
    window: WindowState,
    intents: Sequence[Intent],
    *,
    window_id: int,
    intent_index: int,
    caller: Address,
    clock: WindowClock,
    counter: int,
    cancel_delay: int,
    cancel_enabled: bool,
) -> Intent:
    if not cancel_enabled:
        raise CancelDisabled("cancellation is disabled for this ledger")
    if window.cleared:
        raise AlreadyCleared(window_id)
    intent = lookup_intent(intents, window_id=window_id, intent_index=intent_index)
    if intent.owner != caller:
        raise Unauthorized(caller)
    if intent.claimed:
        raise AlreadyClaimed(window_id, intent_index)
    earliest = clock.window_end_exclusive(window_id) + cancel_delay
    if counter < earliest:
        raise CancelDelayNotElapsed(counter, earliest)
    return intent


def guard_sweep_dust(window: WindowState, *, window_id: int, destination: Optional[Address]) -> None:
    if not window.cleared:
        raise NotCleared(window_id)
    if window.terminal_intent_count != window.intent_count:
        raise WindowNotSettled(window_id, window.terminal_intent_count, window.intent_count)
    if window.dust_swept:
        raise DustAlreadySwept(window_id)
    if is_zero_address(destination):
        raise RecipientZero("dust destination must be a non-zero identity")
