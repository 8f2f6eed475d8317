"""
Domain models for the dexsim paper trading engine.

This package contains the value objects every balance, price and fee
calculation goes through.
"""

from .value_objects import (
    Amount,
    DivisionByZeroError,
    LAMPORTS_PER_SOL,
    ONE,
    ZERO,
    balance_discrepancy,
    balances_match,
)

__all__ = [
    "Amount",
    "DivisionByZeroError",
    "LAMPORTS_PER_SOL",
    "ONE",
    "ZERO",
    "balance_discrepancy",
    "balances_match",
]
