"""Order book simulation: fill-price discovery for market orders."""

from propdesk.execution.simulator.order_book import (
    FillQuote,
    build_synthetic_order_book,
    quote_fill,
    select_book_side,
)

__all__ = [
    "FillQuote",
    "build_synthetic_order_book",
    "quote_fill",
    "select_book_side",
]
