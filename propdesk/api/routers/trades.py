"""Trade endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from propdesk.api.dependencies import get_state_manager, get_trade_executor
from propdesk.api.schemas.trades import TradeListResponse, TradeRequest, TradeResponse
from propdesk.execution.errors import ChallengeNotFoundError
from propdesk.execution.persistence.state_manager import StateManager
from propdesk.execution.runner.trade_executor import TradeExecutor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Trades"])


@router.post("/trades", response_model=TradeResponse)
def execute_trade(
    request: TradeRequest,
    executor: TradeExecutor = Depends(get_trade_executor),
):
    """Execute a market order against a challenge.

    Rejections come back as error bodies carrying a stable ``code``;
    replaying an ``idempotency_key`` returns the original trade.
    """
    trade = executor.execute_trade(
        user_id=request.user_id,
        challenge_id=request.challenge_id,
        market_id=request.market_id,
        side=request.side,
        amount=request.amount,
        direction=request.direction,
        shares=request.shares,
        idempotency_key=request.idempotency_key,
        max_slippage=request.max_slippage,
    )
    return TradeResponse.model_validate(trade)


@router.get("/challenges/{challenge_id}/trades", response_model=TradeListResponse)
def list_trades(
    challenge_id: str,
    since: Optional[int] = Query(None, description="Only trades at or after this time (Unix ms)"),
    limit: int = Query(100, ge=1, le=1000, description="Max trades to return"),
    state_manager: StateManager = Depends(get_state_manager),
):
    """List the trade ledger of a challenge, oldest first."""
    if state_manager.get_challenge(challenge_id) is None:
        raise ChallengeNotFoundError(f"Challenge not found: {challenge_id}")

    trades = state_manager.get_trades(challenge_id, since=since, limit=limit)
    return TradeListResponse(
        trades=[TradeResponse.model_validate(t) for t in trades],
        total=len(trades),
    )
