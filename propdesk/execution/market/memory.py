"""In-memory market data and resolution oracle.

Backs local runs and tests. Markets without an explicit order book get a
synthetic three-level book built around their latest price.
"""

import logging
import threading
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from propdesk.execution.market.interfaces import (
    EventInfo,
    MarketInfo,
    OrderBook,
    PriceQuote,
    ResolutionStatus,
)
from propdesk.execution.simulator.order_book import build_synthetic_order_book
from propdesk.utils.safe_parse import safe_decimal

logger = logging.getLogger(__name__)


class InMemoryMarketData:
    """
    Thread-safe market catalog implementing MarketDataProvider and ResolutionOracle.

    Example:
        markets = InMemoryMarketData()
        markets.add_market("btc-100k", price="0.55", volume="25000000", categories=["crypto"])
        markets.set_order_book("btc-100k", bids=[("0.54", "1000")], asks=[("0.56", "1000")])
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._markets: Dict[str, MarketInfo] = {}
        self._prices: Dict[str, PriceQuote] = {}
        self._books: Dict[str, OrderBook] = {}
        self._events: Dict[str, EventInfo] = {}
        self._resolutions: Dict[str, ResolutionStatus] = {}

    # ========================================================================
    # Catalog management
    # ========================================================================

    def add_market(
        self,
        market_id: str,
        price=None,
        volume="0",
        categories: Optional[Iterable[str]] = None,
        event_id: Optional[str] = None,
        question: str = "",
        accepting_orders: bool = True,
    ) -> MarketInfo:
        """Register a market (and optionally its latest price)."""
        info = MarketInfo(
            market_id=market_id,
            question=question,
            volume=safe_decimal(volume),
            categories=list(categories or []),
            event_id=event_id,
            accepting_orders=accepting_orders,
        )
        with self._lock:
            self._markets[market_id] = info
        if price is not None:
            self.set_price(market_id, price)
        return info

    def add_event(self, event_id: str, market_ids: List[str], title: str = "", multi_outcome: bool = True) -> EventInfo:
        """Group markets under one event."""
        event = EventInfo(
            event_id=event_id,
            title=title,
            market_ids=list(market_ids),
            is_multi_outcome=multi_outcome,
        )
        with self._lock:
            self._events[event_id] = event
            for market_id in market_ids:
                if market_id in self._markets:
                    self._markets[market_id].event_id = event_id
        return event

    def set_price(self, market_id: str, price) -> None:
        with self._lock:
            self._prices[market_id] = PriceQuote(market_id=market_id, price=safe_decimal(price), source="memory")

    def set_order_book(self, market_id: str, bids, asks) -> None:
        """Set an explicit YES book; levels are (price, shares) pairs."""
        book = OrderBook(
            market_id=market_id,
            bids=[(safe_decimal(p), safe_decimal(s)) for p, s in bids],
            asks=[(safe_decimal(p), safe_decimal(s)) for p, s in asks],
        )
        with self._lock:
            self._books[market_id] = book

    def set_accepting_orders(self, market_id: str, accepting: bool) -> None:
        with self._lock:
            self._markets[market_id].accepting_orders = accepting

    def resolve(self, market_id: str, winning_outcome: str, resolution_price=None) -> None:
        """Mark a market resolved."""
        price = safe_decimal(resolution_price, default=None)
        if price is None:
            price = Decimal("1") if winning_outcome == "YES" else Decimal("0")
        with self._lock:
            self._resolutions[market_id] = ResolutionStatus(
                market_id=market_id,
                is_resolved=True,
                winning_outcome=winning_outcome,
                resolution_price=price,
                source="memory",
            )
            if market_id in self._markets:
                self._markets[market_id].closed = True
                self._markets[market_id].accepting_orders = False
        logger.info(f"Market {market_id} resolved {winning_outcome}")

    # ========================================================================
    # MarketDataProvider
    # ========================================================================

    def get_latest_price(self, market_id: str) -> Optional[PriceQuote]:
        with self._lock:
            return self._prices.get(market_id)

    def get_order_book(self, market_id: str) -> Optional[OrderBook]:
        with self._lock:
            book = self._books.get(market_id)
            quote = self._prices.get(market_id)
        if book is not None:
            return book
        if quote is not None:
            return build_synthetic_order_book(market_id, quote.price)
        return None

    def get_market_by_id(self, market_id: str) -> Optional[MarketInfo]:
        with self._lock:
            return self._markets.get(market_id)

    def get_active_markets(self) -> List[MarketInfo]:
        with self._lock:
            return [m for m in self._markets.values() if not m.closed]

    def get_event_info_for_market(self, market_id: str, platform: Optional[str] = None) -> Optional[EventInfo]:
        with self._lock:
            market = self._markets.get(market_id)
            if market is None or market.event_id is None:
                return None
            return self._events.get(market.event_id)

    # ========================================================================
    # ResolutionOracle
    # ========================================================================

    def get_resolution_status(self, market_id: str) -> ResolutionStatus:
        with self._lock:
            return self._resolutions.get(market_id, ResolutionStatus(market_id=market_id, source="memory"))
