"""Risk controls for challenge trading.

This module provides pre-trade validation:
- Drawdown and daily loss floors
- Per-event, per-category and low-volume exposure limits
- Open position ceiling and volume impact
- Arbitrage prevention (binary and multi-outcome)
"""

from propdesk.execution.risk.arbitrage import ArbCheckResult, ArbitrageDetector
from propdesk.execution.risk.risk_engine import RiskCheckResult, RiskEngine, TradeContext

__all__ = [
    "ArbCheckResult",
    "ArbitrageDetector",
    "RiskCheckResult",
    "RiskEngine",
    "TradeContext",
]
