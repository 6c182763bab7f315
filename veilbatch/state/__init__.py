"""
State records for VeilBatch
"""

from .balances import BalanceEscrow, BalanceTable, Escrow
from .events import EventKind, EventLog, LedgerEvent
from .intents import Direction, Intent, Resolution
from .nonces import NonceTable
from .windows import WindowState

__all__ = [
    "BalanceEscrow",
    "BalanceTable",
    "Escrow",
    "EventKind",
    "EventLog",
    "LedgerEvent",
    "Direction",
    "Intent",
    "Resolution",
    "NonceTable",
    "WindowState",
]
