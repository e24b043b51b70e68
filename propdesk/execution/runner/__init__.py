"""Trade execution entry point."""

from propdesk.execution.runner.trade_executor import TradeExecutor, TradeRequest

__all__ = [
    "TradeExecutor",
    "TradeRequest",
]
