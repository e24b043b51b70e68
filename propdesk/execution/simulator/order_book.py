"""Fill-price discovery against a YES-outcome order book.

Books are quoted in YES prices. A NO trade consumes the opposite side of
the YES book at the complementary price (YES + NO = $1):

    BUY  YES -> asks at p        SELL YES -> bids at p
    BUY  NO  -> bids at 1 - p    SELL NO  -> asks at 1 - p

Both walks report the volume-weighted average fill and slippage versus
the top of the consumed side.

Example usage:
    book = OrderBook("m1", bids=[(Decimal("0.68"), Decimal("5000"))],
                     asks=[(Decimal("0.70"), Decimal("5000"))])
    fill = quote_fill(book, side="BUY", direction="NO", amount=Decimal("50"))
    fill.price  # Decimal('0.32')
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from propdesk.execution.errors import LiquidityError
from propdesk.execution.market.interfaces import OrderBook
from propdesk.utils.safe_parse import ONE, ZERO, quantize_price, safe_decimal

Level = Tuple[Decimal, Decimal]

# Unfilled remainder tolerated on a notional walk (USD)
NOTIONAL_DUST = Decimal("1")
# Unfilled remainder tolerated on a share walk
SHARES_DUST = Decimal("0.0001")

SYNTHETIC_SPREAD = Decimal("0.02")
SYNTHETIC_DEPTH = Decimal("5000")


@dataclass
class FillQuote:
    """Result of walking one side of a book."""

    price: Decimal  # volume-weighted, direction-adjusted
    shares: Decimal
    amount: Decimal  # notional actually filled
    top_price: Decimal
    slippage: Decimal  # |avg - top| / top
    levels_consumed: int


def build_synthetic_order_book(market_id: str, price: Decimal) -> OrderBook:
    """
    Build a three-level book around a known YES price.

    Used when a venue exposes a price but no depth. Levels sit 2, 4 and
    6 cents away from the price with 5,000 shares each, clamped to the
    [0.01, 0.99] band.
    """
    floor, ceiling = Decimal("0.01"), Decimal("0.99")
    bids = [(max(floor, price - SYNTHETIC_SPREAD * i), SYNTHETIC_DEPTH) for i in (1, 2, 3)]
    asks = [(min(ceiling, price + SYNTHETIC_SPREAD * i), SYNTHETIC_DEPTH) for i in (1, 2, 3)]
    return OrderBook(market_id=market_id, bids=bids, asks=asks)


def select_book_side(book: OrderBook, side: str, direction: str) -> List[Level]:
    """
    Pick the side of the YES book a trade consumes, in direction-adjusted prices.

    Args:
        book: YES-outcome order book
        side: 'BUY' or 'SELL'
        direction: 'YES' or 'NO'

    Returns:
        Levels (price, shares), best first, with invalid levels dropped
    """
    takes_asks = (side == "BUY") == (direction == "YES")
    raw = book.asks if takes_asks else book.bids

    levels: List[Level] = []
    for raw_price, raw_size in raw:
        price = safe_decimal(raw_price)
        size = safe_decimal(raw_size)
        if price <= 0 or price >= 1 or size <= 0:
            continue
        levels.append((price if direction == "YES" else ONE - price, size))

    # Best first: cheapest to buy, richest to sell
    levels.sort(key=lambda level: level[0], reverse=(side == "SELL"))
    return levels


def walk_book_by_notional(levels: List[Level], amount: Decimal) -> FillQuote:
    """
    Spend ``amount`` USD across the levels.

    Raises:
        LiquidityError: If the book is empty or more than $1 stays unfilled
    """
    if not levels:
        raise LiquidityError("Trade Rejected: No Liquidity")

    remaining = amount
    total_cost = ZERO
    total_shares = ZERO
    consumed = 0

    for price, size in levels:
        if remaining <= 0:
            break
        level_cost = price * size
        consumed += 1
        if remaining >= level_cost:
            total_cost += level_cost
            total_shares += size
            remaining -= level_cost
        else:
            total_cost += remaining
            total_shares += remaining / price
            remaining = ZERO

    if remaining > NOTIONAL_DUST:
        raise LiquidityError(f"Trade Rejected: Insufficient Depth (Unfilled: ${remaining:.2f})")

    return _quote(levels, total_cost, total_shares, consumed)


def walk_book_by_shares(levels: List[Level], shares: Decimal) -> FillQuote:
    """
    Sell ``shares`` across the levels.

    Raises:
        LiquidityError: If the book is empty or cannot absorb the shares
    """
    if not levels:
        raise LiquidityError("Trade Rejected: No Liquidity")

    remaining = shares
    total_proceeds = ZERO
    total_shares = ZERO
    consumed = 0

    for price, size in levels:
        if remaining <= 0:
            break
        take = min(size, remaining)
        consumed += 1
        total_proceeds += take * price
        total_shares += take
        remaining -= take

    if remaining > SHARES_DUST:
        raise LiquidityError(f"Trade Rejected: Insufficient Depth (Unfilled: {remaining:.4f} shares)")

    return _quote(levels, total_proceeds, total_shares, consumed)


def _quote(levels: List[Level], notional: Decimal, shares: Decimal, consumed: int) -> FillQuote:
    if shares <= 0:
        raise LiquidityError("Trade Rejected: No Liquidity")
    avg_price = notional / shares
    top_price = levels[0][0]
    slippage = abs(avg_price - top_price) / top_price
    return FillQuote(
        price=quantize_price(avg_price),
        shares=shares,
        amount=notional,
        top_price=top_price,
        slippage=slippage,
        levels_consumed=consumed,
    )


def quote_fill(
    book: OrderBook,
    side: str,
    direction: str,
    amount: Optional[Decimal] = None,
    shares: Optional[Decimal] = None,
    max_slippage: Optional[Decimal] = None,
) -> FillQuote:
    """
    Resolve the execution price of a trade.

    BUY walks by notional (``amount``); SELL walks by ``shares``.

    Args:
        book: YES-outcome order book
        side: 'BUY' or 'SELL'
        direction: 'YES' or 'NO'
        amount: USD to spend (BUY)
        shares: Shares to sell (SELL)
        max_slippage: Reject fills whose slippage exceeds this fraction

    Returns:
        FillQuote

    Raises:
        LiquidityError: If the book cannot fill, or slippage is too high
    """
    levels = select_book_side(book, side, direction)

    if side == "BUY":
        fill = walk_book_by_notional(levels, amount)
    else:
        fill = walk_book_by_shares(levels, shares)

    if max_slippage is not None and fill.slippage > max_slippage:
        raise LiquidityError(
            f"Slippage {fill.slippage * 100:.2f}% exceeds max {max_slippage * 100:.2f}%"
        )

    return fill
