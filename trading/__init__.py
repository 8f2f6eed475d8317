# Paper Trading Module
"""
Paper Trading Engine

Simulates trading of DEX tokens against live pair prices with a virtual
SOL balance.

Components:
- live_price_service: pair price client with bounded retry
- reference_price_service: cached SOL/USD reference price
- trade_executor: simulated fills with slippage and fees
- simulation: the periodic tick loop and buy intake
- positions: portfolio analytics over the ledger
"""
