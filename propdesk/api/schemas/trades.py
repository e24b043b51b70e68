"""Trade-related schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class TradeRequest(BaseModel):
    """Market order submitted by a trader."""

    user_id: str = Field(description="Caller; must own the challenge")
    challenge_id: str = Field(description="Challenge to trade on")
    market_id: str = Field(description="Target market")
    side: str = Field(description="BUY or SELL")
    direction: str = Field(default="YES", description="YES or NO")
    amount: Optional[Decimal] = Field(None, description="USD to spend (BUY)")
    shares: Optional[Decimal] = Field(None, description="Shares to sell (SELL); omit to close the position")
    idempotency_key: Optional[str] = Field(None, max_length=128, description="At-most-once key")
    max_slippage: Optional[Decimal] = Field(None, description="Max slippage vs top of book (fraction)")


class TradeResponse(BaseModel):
    """Executed trade."""

    id: str = Field(description="Trade ID")
    position_id: str = Field(description="Associated position ID")
    challenge_id: str = Field(description="Challenge ID")
    market_id: str = Field(description="Market ID")
    trade_type: str = Field(description="BUY or SELL")
    direction: str = Field(description="YES or NO")
    price: Decimal = Field(description="Direction-adjusted average fill price")
    amount: Decimal = Field(description="Notional (BUY cost or SELL proceeds)")
    shares: Decimal = Field(description="Shares filled")
    fees: Decimal = Field(description="Fees charged")
    realized_pnl: Optional[Decimal] = Field(None, description="Realized P&L (SELL only)")
    slippage: Optional[Decimal] = Field(None, description="Slippage vs top of book (fraction)")
    idempotency_key: Optional[str] = Field(None, description="Idempotency key")
    executed_at: int = Field(description="Execution timestamp (Unix ms)")

    model_config = {"from_attributes": True}


class TradeListResponse(BaseModel):
    """Response for trade list endpoint."""

    trades: List[TradeResponse] = Field(description="List of trades")
    total: int = Field(description="Number of trades returned")
