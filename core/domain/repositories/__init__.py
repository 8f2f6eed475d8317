"""
Repository layer for dexsim domain models.

Repositories isolate domain logic from persistence. The ledger repository
is the single owner of balance, position and trade records.
"""

from .ledger_repository import (
    InsufficientBalanceError,
    LedgerRepository,
    PositionAlreadyOpenError,
    PositionLimitError,
    PositionNotFoundError,
    StoreError,
    TradingStats,
)

__all__ = [
    "InsufficientBalanceError",
    "LedgerRepository",
    "PositionAlreadyOpenError",
    "PositionLimitError",
    "PositionNotFoundError",
    "StoreError",
    "TradingStats",
]
