"""Periodic job triggers.

Invoked by an external scheduler; each requires the cron bearer secret
when one is configured.
"""

import logging

from fastapi import APIRouter, Depends

from propdesk.api.dependencies import (
    get_balance_auditor,
    get_daily_reset_job,
    get_evaluator,
    get_settlement_service,
    verify_cron_secret,
)
from propdesk.api.schemas.challenges import EvaluationResponse
from propdesk.api.schemas.cron import (
    BalanceAuditItem,
    BalanceAuditResponse,
    DailyResetResponse,
    EvaluationSweepResponse,
    SettlementResponse,
)
from propdesk.execution.evaluation.daily_reset import DailyResetJob
from propdesk.execution.evaluation.evaluator import ChallengeEvaluator
from propdesk.execution.settlement.audit import BalanceAuditor
from propdesk.execution.settlement.settlement import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/cron",
    tags=["Cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.post("/daily-reset", response_model=DailyResetResponse)
def daily_reset(job: DailyResetJob = Depends(get_daily_reset_job)):
    """Snapshot start-of-day balances and resolve pending failures."""
    return DailyResetResponse.model_validate(job.run())


@router.post("/evaluate", response_model=EvaluationSweepResponse)
def evaluate_all(evaluator: ChallengeEvaluator = Depends(get_evaluator)):
    """Evaluate every active challenge."""
    results = evaluator.evaluate_all_active()
    return EvaluationSweepResponse(
        evaluated=len(results),
        results={cid: EvaluationResponse.model_validate(r) for cid, r in results.items()},
    )


@router.post("/settlement", response_model=SettlementResponse)
def settle(service: SettlementService = Depends(get_settlement_service)):
    """Close positions in resolved markets at the settlement price."""
    return SettlementResponse.model_validate(service.settle_resolved_positions())


@router.post("/balance-audit", response_model=BalanceAuditResponse)
def balance_audit(auditor: BalanceAuditor = Depends(get_balance_auditor)):
    """Recompute balances from the ledger and flag discrepancies."""
    report = auditor.audit_all_active()
    return BalanceAuditResponse(
        audited=len(report.results),
        alerts=len(report.alerts),
        results=[BalanceAuditItem.model_validate(r) for r in report.results],
    )
