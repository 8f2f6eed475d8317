"""Exit strategies consulted by the strategy engine."""

from .liquidity_drop import LiquidityDropStrategy

__all__ = [
    "LiquidityDropStrategy",
]
