"""Challenge lifecycle: provisioning, evaluation and the daily reset."""

from propdesk.execution.evaluation.challenges import open_challenge
from propdesk.execution.evaluation.daily_reset import DailyResetJob, DailyResetSummary
from propdesk.execution.evaluation.evaluator import ChallengeEvaluator, EvaluationResult

__all__ = [
    "ChallengeEvaluator",
    "DailyResetJob",
    "DailyResetSummary",
    "EvaluationResult",
    "open_challenge",
]
