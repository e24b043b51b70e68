"""Unit tests for the UTC day-boundary reset."""

from decimal import Decimal

import pytest

from propdesk.execution.evaluation.challenges import MS_PER_DAY, open_challenge
from propdesk.execution.evaluation.daily_reset import DailyResetJob, utc_day


@pytest.fixture
def job(state_manager, evaluator):
    return DailyResetJob(state_manager, evaluator)


@pytest.fixture
def next_day(challenge):
    return challenge.started_at + MS_PER_DAY


def test_utc_day():
    assert utc_day(0) == "1970-01-01"
    assert utc_day(MS_PER_DAY - 1) == "1970-01-01"
    assert utc_day(MS_PER_DAY) == "1970-01-02"


class TestDailyResetJob:
    """Test suite for DailyResetJob."""

    def test_same_day_skipped(self, job, challenge):
        summary = job.run(now=challenge.last_daily_reset_at)

        assert summary.skipped == [challenge.id]
        assert summary.reset == []

    def test_snapshots_start_of_day_balance(self, job, state_manager, challenge, set_balance, next_day):
        set_balance(challenge.id, "9800")

        summary = job.run(now=next_day)

        assert summary.reset == [challenge.id]
        stored = state_manager.get_challenge(challenge.id)
        assert stored.start_of_day_balance == Decimal("9800")
        assert stored.last_daily_reset_at == next_day

    def test_idempotent_within_day(self, job, state_manager, challenge, set_balance, next_day):
        job.run(now=next_day)
        set_balance(challenge.id, "9700")

        summary = job.run(now=next_day + 1000)

        assert summary.skipped == [challenge.id]
        assert state_manager.get_challenge(challenge.id).start_of_day_balance == Decimal("10000")

    def test_pending_still_breached_fails(self, job, state_manager, challenge, set_balance, next_day):
        set_balance(challenge.id, "9400", pending_failure_at=challenge.started_at)

        summary = job.run(now=next_day)

        assert summary.failed == [challenge.id]
        stored = state_manager.get_challenge(challenge.id)
        assert stored.status == "failed"
        assert stored.failure_reason.startswith("Daily loss limit not recovered by end of day")

    def test_pending_recovered_cleared(self, job, state_manager, challenge, set_balance, next_day):
        set_balance(challenge.id, "9600", pending_failure_at=challenge.started_at)

        summary = job.run(now=next_day)

        assert summary.recovered == [challenge.id]
        assert summary.reset == [challenge.id]
        stored = state_manager.get_challenge(challenge.id)
        assert stored.pending_failure_at is None
        assert stored.start_of_day_balance == Decimal("9600")

    def test_inactive_challenges_ignored(self, job, state_manager, challenge, next_day):
        other = open_challenge(state_manager, "user-2", tier="5k")
        challenge.status = "failed"
        state_manager.update_challenge(challenge)

        summary = job.run(now=next_day)

        assert summary.reset == [other.id]
        assert challenge.id not in summary.skipped
