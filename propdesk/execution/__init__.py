"""Risk-and-execution engine for challenge accounts.

Subpackages:
- persistence: challenges, positions, trade ledger, per-challenge locking
- market: market data and resolution capability interfaces
- tracking: valuation and balance/position mutations
- risk: pre-trade rule chain and arbitrage prevention
- simulator: order book fill discovery
- runner: trade executor
- evaluation: challenge state machine and daily reset
- settlement: resolved-market settlement and balance audit
"""
