"""Position valuation."""

from propdesk.execution.tracking.valuation import (
    PortfolioValuation,
    direction_adjusted_price,
    portfolio_value,
    position_metrics,
)

__all__ = [
    "PortfolioValuation",
    "direction_adjusted_price",
    "portfolio_value",
    "position_metrics",
]
