"""Pytest configuration and shared fixtures."""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from propdesk.config.settings import EngineSettings  # noqa: E402
from propdesk.execution.evaluation.challenges import open_challenge  # noqa: E402
from propdesk.execution.evaluation.evaluator import ChallengeEvaluator  # noqa: E402
from propdesk.execution.market.memory import InMemoryMarketData  # noqa: E402
from propdesk.execution.persistence.state_manager import StateManager  # noqa: E402
from propdesk.execution.runner.trade_executor import TradeExecutor  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    """Engine settings isolated from the environment."""
    return EngineSettings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'propdesk.db'}",
        cron_secret=None,
        fee_rate=0.0,
        max_slippage=None,
    )


@pytest.fixture
def state_manager(settings):
    """StateManager on a fresh SQLite file."""
    sm = StateManager(database_url=settings.database_url)
    yield sm
    sm.close()


@pytest.fixture
def market_data():
    """Market catalog with a few liquid markets.

    btc-100k and eth-5k share the crypto category; election is politics.
    """
    markets = InMemoryMarketData()
    markets.add_market("btc-100k", price="0.55", volume="20000000", categories=["crypto"])
    markets.add_market("eth-5k", price="0.40", volume="15000000", categories=["crypto"])
    markets.add_market("election", price="0.50", volume="50000000", categories=["politics"])
    return markets


@pytest.fixture
def challenge(state_manager):
    """Active 10k challenge owned by user-1."""
    return open_challenge(state_manager, "user-1", tier="10k")


@pytest.fixture
def evaluator(state_manager, market_data, settings):
    return ChallengeEvaluator(state_manager, market_data, settings)


@pytest.fixture
def executor(state_manager, market_data, settings, evaluator):
    """TradeExecutor using the in-memory catalog as its resolution oracle."""
    return TradeExecutor(state_manager, market_data, market_data, settings=settings, evaluator=evaluator)


@pytest.fixture
def set_balance(state_manager):
    """Overwrite a challenge's cash balance (and any other fields) in place."""

    def _set(challenge_id, balance, **fields):
        challenge = state_manager.get_challenge(challenge_id)
        challenge.current_balance = Decimal(str(balance))
        for name, value in fields.items():
            setattr(challenge, name, value)
        state_manager.update_challenge(challenge)
        return challenge

    return _set
