"""Resolved-market settlement and balance reconciliation."""

from propdesk.execution.settlement.audit import BalanceAuditor, BalanceAuditReport, BalanceAuditResult
from propdesk.execution.settlement.settlement import SettlementResult, SettlementService

__all__ = [
    "BalanceAuditReport",
    "BalanceAuditResult",
    "BalanceAuditor",
    "SettlementResult",
    "SettlementService",
]
