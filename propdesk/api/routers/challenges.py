"""Challenge, position and evaluation endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from propdesk.api.dependencies import get_evaluator, get_state_manager
from propdesk.api.schemas.challenges import (
    ChallengeListResponse,
    ChallengeResponse,
    CreateChallengeRequest,
    EvaluationResponse,
    PositionListResponse,
    PositionResponse,
)
from propdesk.execution.errors import ChallengeNotFoundError, ValidationError
from propdesk.execution.evaluation.challenges import open_challenge
from propdesk.execution.evaluation.evaluator import ChallengeEvaluator
from propdesk.execution.persistence.state_manager import Challenge, StateManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Challenges"])


def _to_response(challenge: Challenge) -> ChallengeResponse:
    return ChallengeResponse(
        id=challenge.id,
        user_id=challenge.user_id,
        phase=challenge.phase,
        status=challenge.status,
        platform=challenge.platform,
        starting_balance=challenge.starting_balance,
        current_balance=challenge.current_balance,
        start_of_day_balance=challenge.start_of_day_balance,
        high_water_mark=challenge.high_water_mark,
        started_at=challenge.started_at,
        ends_at=challenge.ends_at,
        pending_failure_at=challenge.pending_failure_at,
        failure_reason=challenge.failure_reason,
        rules=challenge.rules.to_dict(),
    )


def _load(state_manager: StateManager, challenge_id: str) -> Challenge:
    challenge = state_manager.get_challenge(challenge_id)
    if challenge is None:
        raise ChallengeNotFoundError(f"Challenge not found: {challenge_id}")
    return challenge


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
def create_challenge(
    request: CreateChallengeRequest,
    state_manager: StateManager = Depends(get_state_manager),
):
    """Open a challenge from a tier preset."""
    try:
        challenge = open_challenge(
            state_manager, request.user_id, tier=request.tier, platform=request.platform
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return _to_response(challenge)


@router.get("/challenges", response_model=ChallengeListResponse)
def list_challenges(
    user_id: Optional[str] = Query(None, description="Filter by owner"),
    status: Optional[str] = Query(None, description="Filter by status"),
    state_manager: StateManager = Depends(get_state_manager),
):
    """List challenges in creation order."""
    challenges = state_manager.get_challenges(status=status, user_id=user_id)
    return ChallengeListResponse(
        challenges=[_to_response(c) for c in challenges],
        total=len(challenges),
    )


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
def get_challenge(
    challenge_id: str,
    state_manager: StateManager = Depends(get_state_manager),
):
    """Get a challenge with its frozen rules."""
    return _to_response(_load(state_manager, challenge_id))


@router.get("/challenges/{challenge_id}/positions", response_model=PositionListResponse)
def list_positions(
    challenge_id: str,
    state_manager: StateManager = Depends(get_state_manager),
    evaluator: ChallengeEvaluator = Depends(get_evaluator),
):
    """Open positions marked to market, with cash and equity.

    Live quotes outside the sanity band fall back to the stored mark,
    exactly as in evaluation.
    """
    challenge = _load(state_manager, challenge_id)
    positions = state_manager.get_open_positions(challenge_id)
    valuation = evaluator.value_positions(positions, evaluator.prefetch_prices(challenge_id))

    by_id = {p.id: p for p in positions}
    items = []
    for line in valuation.positions:
        position = by_id[line.position_id]
        items.append(
            PositionResponse(
                id=position.id,
                market_id=position.market_id,
                direction=position.direction,
                shares=position.shares,
                size_amount=position.size_amount,
                entry_price=position.entry_price,
                current_price=line.effective_price,
                position_value=line.position_value,
                unrealized_pnl=line.unrealized_pnl,
                price_source=line.price_source,
                opened_at=position.opened_at,
            )
        )

    return PositionListResponse(
        positions=items,
        total_value=valuation.total_value,
        cash_balance=challenge.current_balance,
        equity=challenge.current_balance + valuation.total_value,
    )


@router.post("/challenges/{challenge_id}/evaluate", response_model=EvaluationResponse)
def evaluate_challenge(
    challenge_id: str,
    evaluator: ChallengeEvaluator = Depends(get_evaluator),
):
    """Evaluate a challenge now and apply any state transition."""
    return EvaluationResponse.model_validate(evaluator.evaluate(challenge_id))
