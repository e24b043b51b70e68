"""Schemas for periodic job triggers."""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from propdesk.api.schemas.challenges import EvaluationResponse


class DailyResetResponse(BaseModel):
    """Outcome of the day-boundary reset."""

    reset: List[str] = Field(description="Challenges whose start-of-day balance was snapshotted")
    failed: List[str] = Field(description="Pending failures finalized")
    recovered: List[str] = Field(description="Pending failures cleared")
    skipped: List[str] = Field(description="Already reset today or no longer active")
    errors: List[str] = Field(description="Challenges the reset could not process")

    model_config = {"from_attributes": True}


class EvaluationSweepResponse(BaseModel):
    """Outcome of evaluating every active challenge."""

    evaluated: int
    results: Dict[str, EvaluationResponse]


class SettlementResponse(BaseModel):
    """Outcome of a settlement sweep."""

    positions_checked: int
    positions_settled: int
    total_pnl_settled: Decimal
    errors: List[str]

    model_config = {"from_attributes": True}


class BalanceAuditItem(BaseModel):
    """Audit of one challenge."""

    challenge_id: str
    user_id: str
    status: str
    starting_balance: Decimal
    stored_balance: Decimal
    calculated_balance: Decimal
    position_value: Decimal
    discrepancy: Decimal
    trades_counted: int
    is_suspicious: bool
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class BalanceAuditResponse(BaseModel):
    """Outcome of a balance audit sweep."""

    audited: int
    alerts: int
    results: List[BalanceAuditItem]
