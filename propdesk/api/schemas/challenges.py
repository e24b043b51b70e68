"""Challenge, position and evaluation schemas."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreateChallengeRequest(BaseModel):
    """Open a challenge from a tier preset."""

    user_id: str = Field(description="Owner")
    tier: str = Field(default="10k", description="Tier preset (5k, 10k, 25k)")
    platform: str = Field(default="polymarket", description="Venue used to resolve market events")


class ChallengeResponse(BaseModel):
    """Challenge state."""

    id: str
    user_id: str
    phase: str = Field(description="challenge, verification or funded")
    status: str = Field(description="active, passed, failed or cancelled")
    platform: str
    starting_balance: Decimal
    current_balance: Decimal
    start_of_day_balance: Decimal
    high_water_mark: Decimal
    started_at: int = Field(description="Start timestamp (Unix ms)")
    ends_at: Optional[int] = Field(None, description="Deadline (Unix ms); none once funded")
    pending_failure_at: Optional[int] = Field(None, description="Daily-loss breach marker (Unix ms)")
    failure_reason: Optional[str] = None
    rules: Dict[str, Any] = Field(description="Frozen rules for this challenge")


class PositionResponse(BaseModel):
    """Open position with its current valuation."""

    id: str
    market_id: str
    direction: str
    shares: Decimal
    size_amount: Decimal = Field(description="Cost basis")
    entry_price: Decimal = Field(description="Direction-adjusted entry price")
    current_price: Optional[Decimal] = Field(None, description="Direction-adjusted mark")
    position_value: Decimal
    unrealized_pnl: Decimal
    price_source: str = Field(description="live or stored")
    opened_at: int


class PositionListResponse(BaseModel):
    """Open positions of a challenge."""

    positions: List[PositionResponse]
    total_value: Decimal = Field(description="Mark-to-market value of open positions")
    cash_balance: Decimal
    equity: Decimal = Field(description="Cash plus open position value")


class EvaluationResponse(BaseModel):
    """Outcome of a challenge evaluation."""

    status: str = Field(description="active, pending_failure, passed or failed")
    reason: Optional[str] = None
    equity: Optional[Decimal] = None
    phase: Optional[str] = None

    model_config = {"from_attributes": True}


class ChallengeListResponse(BaseModel):
    """Response for challenge list endpoint."""

    challenges: List[ChallengeResponse]
    total: int
