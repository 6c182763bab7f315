"""
Core logic for VeilBatch: window arithmetic, settlement math and the ledger.

The ledger engine lives in `veilbatch.core.ledger`; import it from there.
"""

from .errors import (
    LedgerError,
    LedgerStateError,
    ValidationError,
    VeilBatchError,
)
from .settlement import (
    ConstantProductOutput,
    FixedRateOutput,
    IdentityOutput,
    OutputFunction,
    pro_rata_share,
)
from .window_clock import WindowClock

__all__ = [
    "LedgerError",
    "LedgerStateError",
    "ValidationError",
    "VeilBatchError",
    "ConstantProductOutput",
    "FixedRateOutput",
    "IdentityOutput",
    "OutputFunction",
    "pro_rata_share",
    "WindowClock",
]
