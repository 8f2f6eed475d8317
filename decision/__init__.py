"""
Decision Module for the dexsim paper trading engine.

This module decides when open positions should be closed: fixed stop-loss
and take-profit thresholds first, then the registered exit strategies.
"""

from decision.engine import StrategyEngine, build_strategies

__all__ = [
    'StrategyEngine',
    'build_strategies'
]
