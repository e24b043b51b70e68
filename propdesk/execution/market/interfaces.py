"""Capability interfaces for market data and resolution.

The engine consumes prices, order books, market metadata and resolution
status through these protocols. Prices are YES-outcome probabilities in
[0, 1]; direction adjustment happens inside the engine.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple


@dataclass
class PriceQuote:
    """Latest YES-outcome price for a market."""

    market_id: str
    price: Decimal
    timestamp: Optional[int] = None
    source: str = "feed"


@dataclass
class OrderBook:
    """
    Two-sided YES-outcome order book.

    Levels are (price, size_in_shares) tuples; bids sorted best (highest)
    first, asks sorted best (lowest) first.
    """

    market_id: str
    bids: List[Tuple[Decimal, Decimal]] = field(default_factory=list)
    asks: List[Tuple[Decimal, Decimal]] = field(default_factory=list)


@dataclass
class MarketInfo:
    """Market metadata used by risk checks."""

    market_id: str
    question: str = ""
    volume: Decimal = Decimal("0")
    categories: List[str] = field(default_factory=list)
    event_id: Optional[str] = None
    accepting_orders: bool = True
    closed: bool = False


@dataclass
class EventInfo:
    """
    Parent event of a market.

    A multi-outcome event groups N mutually exclusive, exhaustive outcome
    markets: exactly one resolves YES.
    """

    event_id: str
    title: str = ""
    market_ids: List[str] = field(default_factory=list)
    is_multi_outcome: bool = False


@dataclass
class ResolutionStatus:
    """Resolution state of a market as reported by the oracle."""

    market_id: str
    is_resolved: bool = False
    winning_outcome: Optional[str] = None  # 'YES' or 'NO'
    resolution_price: Optional[Decimal] = None  # YES-outcome settlement price
    source: str = "oracle"


class MarketDataProvider(Protocol):
    """Read-only market data."""

    def get_latest_price(self, market_id: str) -> Optional[PriceQuote]:
        ...

    def get_order_book(self, market_id: str) -> Optional[OrderBook]:
        ...

    def get_market_by_id(self, market_id: str) -> Optional[MarketInfo]:
        ...

    def get_active_markets(self) -> List[MarketInfo]:
        ...

    def get_event_info_for_market(self, market_id: str, platform: Optional[str] = None) -> Optional[EventInfo]:
        ...


class ResolutionOracle(Protocol):
    """Authoritative market resolution."""

    def get_resolution_status(self, market_id: str) -> ResolutionStatus:
        ...
