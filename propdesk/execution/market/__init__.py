"""Market data capabilities consumed by the engine."""

from propdesk.execution.market.interfaces import (
    EventInfo,
    MarketDataProvider,
    MarketInfo,
    OrderBook,
    PriceQuote,
    ResolutionOracle,
    ResolutionStatus,
)
from propdesk.execution.market.memory import InMemoryMarketData

__all__ = [
    "EventInfo",
    "InMemoryMarketData",
    "MarketDataProvider",
    "MarketInfo",
    "OrderBook",
    "PriceQuote",
    "ResolutionOracle",
    "ResolutionStatus",
]
