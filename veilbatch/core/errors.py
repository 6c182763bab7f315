"""Exception types for the batch ledger and its clearing agent.

Every ledger operation is a single atomic attempt: it either commits or raises
one of the ``LedgerError`` subclasses below and leaves state untouched.

- ``ValidationError``: the caller's fault; retrying the same call changes nothing.
- ``LedgerStateError``: the call arrived out of order; it may become valid later
  (e.g. ``NotEnded`` before the window boundary) but is never retried by the agent.
- ``TransientError`` / ``RetryExhaustedError``: infrastructure failures, the only
  class the clearing agent retries.
- ``ConfigError``: fatal, raised at construction/startup.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class VeilBatchError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(VeilBatchError):
    """Invalid static configuration (aborts initialization)."""


class InvalidWindowSize(ConfigError):
    def __init__(self, window_size: int) -> None:
        self.window_size = window_size
        super().__init__(f"window_size must be positive, got {window_size}")


class LedgerError(VeilBatchError):
    """A typed, deterministic rejection of a ledger operation."""

    code: str = "ledger_error"

    def __init__(self, message: str = "", details: Optional[Mapping[str, Any]] = None) -> None:
        self.details = dict(details or {})
        super().__init__(message or self.code)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.details:
            return base
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{base} ({extra})"


class ValidationError(LedgerError):
    code = "validation"


class LedgerStateError(LedgerError):
    code = "state"


# -- Validation errors ---------------------------------------------------------

class AmountTooSmall(ValidationError):
    code = "amount_too_small"

    def __init__(self, amount_in: int, min_amount_in: int) -> None:
        super().__init__("amount_in must exceed the configured minimum",
                         {"amount_in": amount_in, "min_amount_in": min_amount_in})


class AmountOutOfRange(ValidationError):
    code = "amount_out_of_range"

    def __init__(self, name: str, value: Any) -> None:
        super().__init__(f"{name} is outside the uint128 domain", {name: value})


class RecipientZero(ValidationError):
    code = "recipient_zero"


class WindowFull(ValidationError):
    code = "window_full"

    def __init__(self, window_id: int, max_intents: int) -> None:
        super().__init__("window has reached its intent capacity",
                         {"window_id": window_id, "max_intents": max_intents})


class DuplicateInWindow(ValidationError):
    code = "duplicate_in_window"

    def __init__(self, owner: str, window_id: int) -> None:
        super().__init__("owner already submitted in this window",
                         {"owner": owner, "window_id": window_id})


class InvalidIntent(ValidationError):
    code = "invalid_intent"

    def __init__(self, window_id: int, intent_index: Any) -> None:
        super().__init__("no such intent", {"window_id": window_id, "intent_index": intent_index})


class Unauthorized(ValidationError):
    code = "unauthorized"

    def __init__(self, caller: str) -> None:
        super().__init__("caller is not the intent owner", {"caller": caller})


class MinOutNotMet(ValidationError):
    code = "min_out_not_met"

    def __init__(self, amount_out: int, min_out: int) -> None:
        self.amount_out = amount_out
        self.min_out = min_out
        super().__init__("pro-rata share is below the intent's minimum output",
                         {"amount_out": amount_out, "min_out": min_out})


class SignatureError(ValidationError):
    code = "bad_signature"


class NonceError(ValidationError):
    code = "bad_nonce"


# -- State errors --------------------------------------------------------------

class NotStarted(LedgerStateError):
    code = "not_started"

    def __init__(self, counter: int, start: int) -> None:
        self.counter = counter
        self.start = start
        super().__init__("counter is before the first window", {"counter": counter, "start": start})


class NotEnded(LedgerStateError):
    code = "not_ended"

    def __init__(self, counter: int, end_exclusive: int) -> None:
        self.counter = counter
        self.end_exclusive = end_exclusive
        super().__init__("window boundary has not passed",
                         {"counter": counter, "end_exclusive": end_exclusive})


class UnknownWindow(LedgerStateError):
    code = "unknown_window"

    def __init__(self, window_id: int) -> None:
        super().__init__("window has no intents", {"window_id": window_id})


class AlreadyCleared(LedgerStateError):
    code = "already_cleared"

    def __init__(self, window_id: int) -> None:
        super().__init__("window already cleared", {"window_id": window_id})


class NotCleared(LedgerStateError):
    code = "not_cleared"

    def __init__(self, window_id: int) -> None:
        super().__init__("window not cleared yet", {"window_id": window_id})


class AlreadyClaimed(LedgerStateError):
    code = "already_claimed"

    def __init__(self, window_id: int, intent_index: int) -> None:
        super().__init__("intent already resolved", {"window_id": window_id, "intent_index": intent_index})


class CancelDelayNotElapsed(LedgerStateError):
    code = "cancel_delay_not_elapsed"

    def __init__(self, counter: int, earliest: int) -> None:
        super().__init__("cancel delay has not elapsed", {"counter": counter, "earliest": earliest})


class CancelDisabled(LedgerStateError):
    code = "cancel_disabled"


class WindowNotSettled(LedgerStateError):
    code = "window_not_settled"

    def __init__(self, window_id: int, terminal: int, intent_count: int) -> None:
        super().__init__("not every intent is terminal",
                         {"window_id": window_id, "terminal": terminal, "intent_count": intent_count})


class DustAlreadySwept(LedgerStateError):
    code = "dust_already_swept"

    def __init__(self, window_id: int) -> None:
        super().__init__("dust already swept", {"window_id": window_id})


class ClaimedExceedsTotal(LedgerStateError):
    code = "claimed_exceeds_total"

    def __init__(self, claimed_out_sum: int, total_out: int) -> None:
        super().__init__("claimed output exceeds total output",
                         {"claimed_out_sum": claimed_out_sum, "total_out": total_out})


class InvalidOutput(LedgerStateError):
    code = "invalid_output"

    def __init__(self, window_id: int, value: Any) -> None:
        super().__init__("output function must return a non-negative int",
                         {"window_id": window_id, "value": value})


class InvariantViolation(LedgerStateError):
    """Raised when a candidate post-state violates one or more invariants."""

    code = "invariant"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")


# -- Collaborator / infrastructure errors ---------------------------------------

class EscrowError(VeilBatchError):
    """The value-transfer collaborator refused a movement; the operation aborts."""


class TransientError(VeilBatchError):
    """A retryable infrastructure failure (network, RPC, timeout)."""


class RetryExhaustedError(VeilBatchError):
    def __init__(self, label: str, attempts: int) -> None:
        self.label = label
        self.attempts = attempts
        super().__init__(f"{label} failed after {attempts} attempts")
