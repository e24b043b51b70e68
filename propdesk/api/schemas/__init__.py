"""Pydantic schemas for API request/response models."""

from propdesk.api.schemas.challenges import (
    ChallengeListResponse,
    ChallengeResponse,
    CreateChallengeRequest,
    EvaluationResponse,
    PositionListResponse,
    PositionResponse,
)
from propdesk.api.schemas.cron import (
    BalanceAuditItem,
    BalanceAuditResponse,
    DailyResetResponse,
    EvaluationSweepResponse,
    SettlementResponse,
)
from propdesk.api.schemas.trades import TradeListResponse, TradeRequest, TradeResponse

__all__ = [
    "BalanceAuditItem",
    "BalanceAuditResponse",
    "ChallengeListResponse",
    "ChallengeResponse",
    "CreateChallengeRequest",
    "DailyResetResponse",
    "EvaluationResponse",
    "EvaluationSweepResponse",
    "PositionListResponse",
    "PositionResponse",
    "SettlementResponse",
    "TradeListResponse",
    "TradeRequest",
    "TradeResponse",
]
