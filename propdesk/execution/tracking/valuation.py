"""Mark-to-market valuation of prediction-market positions.

Prices from feeds are YES-outcome probabilities. A NO holder's share is
worth ``1 - p``. Stored ``entry_price`` and ``current_price`` on a
position are already direction-adjusted; only live quotes are adjusted
here, and never twice.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

from propdesk.utils.logger import get_valuation_logger
from propdesk.utils.safe_parse import ONE, ZERO, safe_decimal

logger = logging.getLogger(__name__)
valuation_log = get_valuation_logger()

# Live quotes outside (min, max) are treated as stale or erroneous
DEFAULT_SANITY_MIN = Decimal("0.01")
DEFAULT_SANITY_MAX = Decimal("0.99")

SOURCE_LIVE = "live"
SOURCE_STORED = "stored"


@dataclass
class PositionMetrics:
    """Valuation of one position at one price."""

    effective_price: Decimal
    position_value: Decimal
    unrealized_pnl: Decimal


@dataclass
class PositionValuation:
    """Per-position line of a portfolio valuation."""

    position_id: Optional[str]
    market_id: str
    direction: str
    shares: Decimal
    entry_price: Decimal
    effective_price: Decimal
    position_value: Decimal
    unrealized_pnl: Decimal
    price_source: str


@dataclass
class PortfolioValuation:
    """Total mark-to-market value of a set of positions."""

    total_value: Decimal = ZERO
    total_unrealized_pnl: Decimal = ZERO
    positions: List[PositionValuation] = field(default_factory=list)


def direction_adjusted_price(raw_yes_price: Decimal, direction: str) -> Decimal:
    """
    Convert a YES-outcome price into the price of the held direction.

    Args:
        raw_yes_price: YES probability in [0, 1]
        direction: 'YES' or 'NO'

    Returns:
        raw_yes_price for YES, 1 - raw_yes_price for NO
    """
    if direction == "NO":
        return ONE - raw_yes_price
    return raw_yes_price


def position_metrics(
    shares: Decimal, entry_price: Decimal, current_raw_price: Decimal, direction: str
) -> PositionMetrics:
    """
    Value a position at a raw (YES) price.

    ``entry_price`` is the stored, already direction-adjusted entry.
    """
    effective = direction_adjusted_price(current_raw_price, direction)
    return PositionMetrics(
        effective_price=effective,
        position_value=shares * effective,
        unrealized_pnl=shares * (effective - entry_price),
    )


def _in_band(price: Optional[Decimal], sanity_min: Decimal, sanity_max: Decimal) -> bool:
    return price is not None and sanity_min < price < sanity_max


def portfolio_value(
    positions: Iterable,
    live_prices: Optional[Mapping[str, object]] = None,
    sanity_min: Decimal = DEFAULT_SANITY_MIN,
    sanity_max: Decimal = DEFAULT_SANITY_MAX,
) -> PortfolioValuation:
    """
    Mark a set of positions to market.

    A live YES quote is used only when it lies strictly inside the sanity
    band; otherwise the stored current price (else the entry price) is
    used. Positions with no shares or corrupt numbers are skipped.

    Args:
        positions: Position records (market_id, direction, shares,
            entry_price, current_price)
        live_prices: market_id -> raw YES price (any numeric type)
        sanity_min: Lower bound of the accepted live-price band
        sanity_max: Upper bound of the accepted live-price band

    Returns:
        PortfolioValuation with per-position breakdown
    """
    live_prices = live_prices or {}
    result = PortfolioValuation()

    for position in positions:
        shares = safe_decimal(getattr(position, "shares", None))
        entry = safe_decimal(getattr(position, "entry_price", None))
        if shares <= 0 or entry <= 0:
            continue

        direction = position.direction
        live = safe_decimal(live_prices.get(position.market_id), default=None)

        if _in_band(live, sanity_min, sanity_max):
            effective = direction_adjusted_price(live, direction)
            source = SOURCE_LIVE
        else:
            stored = safe_decimal(getattr(position, "current_price", None), default=None)
            effective = stored if stored is not None and stored > 0 else entry
            source = SOURCE_STORED
            if live is not None:
                valuation_log.info(
                    f"Ignoring out-of-band quote {live} for {position.market_id}",
                    extra_data={
                        "market_id": position.market_id,
                        "quote": str(live),
                        "fallback_price": str(effective),
                    },
                )

        value = shares * effective
        pnl = shares * (effective - entry)

        result.total_value += value
        result.total_unrealized_pnl += pnl
        result.positions.append(
            PositionValuation(
                position_id=getattr(position, "id", None),
                market_id=position.market_id,
                direction=direction,
                shares=shares,
                entry_price=entry,
                effective_price=effective,
                position_value=value,
                unrealized_pnl=pnl,
                price_source=source,
            )
        )

    return result


def live_price_map(market_data, market_ids: Iterable[str]) -> Dict[str, Decimal]:
    """
    Fetch latest raw prices for a set of markets.

    Feed failures for one market are logged and leave that market out of
    the map, so valuation falls back to stored prices for it.
    """
    prices: Dict[str, Decimal] = {}
    for market_id in set(market_ids):
        try:
            quote = market_data.get_latest_price(market_id)
        except Exception as e:
            logger.warning(f"Price fetch failed for {market_id}: {e}")
            continue
        if quote is not None:
            price = safe_decimal(quote.price, default=None)
            if price is not None:
                prices[market_id] = price
    return prices
