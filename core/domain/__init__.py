"""
Core Domain Models

This module contains the domain records and value objects for the dexsim
paper trading engine. Domain models represent business entities and their
behavior, independent of infrastructure concerns like databases or APIs.
"""

from .models.value_objects import Amount, DivisionByZeroError, LAMPORTS_PER_SOL, ONE, ZERO

# Ledger records
from .position import (
    MarketSnapshot,
    Position,
    SellFill,
    Trade,
    VirtualBalance,
    compute_pnl,
    now_ms,
)

__all__ = [
    # Value objects
    'Amount',
    'DivisionByZeroError',
    'LAMPORTS_PER_SOL',
    'ONE',
    'ZERO',

    # Ledger records
    'MarketSnapshot',
    'Position',
    'SellFill',
    'Trade',
    'VirtualBalance',
    'compute_pnl',
    'now_ms',
]
