"""Dependency injection for API endpoints."""

import logging
from typing import Optional

from fastapi import Header

from propdesk.api.middleware.error_handler import APIError
from propdesk.config.settings import get_settings
from propdesk.execution.evaluation.daily_reset import DailyResetJob
from propdesk.execution.evaluation.evaluator import ChallengeEvaluator
from propdesk.execution.market.interfaces import MarketDataProvider, ResolutionOracle
from propdesk.execution.market.memory import InMemoryMarketData
from propdesk.execution.persistence.state_manager import StateManager
from propdesk.execution.runner.trade_executor import TradeExecutor
from propdesk.execution.settlement.audit import BalanceAuditor
from propdesk.execution.settlement.settlement import SettlementService

logger = logging.getLogger(__name__)

# Global instances
_state_manager: Optional[StateManager] = None
_market_data: Optional[MarketDataProvider] = None
_oracle: Optional[ResolutionOracle] = None


def get_state_manager() -> StateManager:
    """Get or create the global StateManager instance.

    Returns:
        StateManager instance
    """
    global _state_manager
    if _state_manager is None:
        settings = get_settings()
        _state_manager = StateManager(database_url=settings.database_url)
        logger.info("StateManager initialized")
    return _state_manager


def close_state_manager() -> None:
    """Close the global StateManager instance."""
    global _state_manager
    if _state_manager is not None:
        _state_manager.close()
        _state_manager = None
        logger.info("StateManager closed")


def configure(
    state_manager: Optional[StateManager] = None,
    market_data: Optional[MarketDataProvider] = None,
    oracle: Optional[ResolutionOracle] = None,
) -> None:
    """Install collaborators (deployment wiring and tests).

    Args:
        state_manager: Persistence to use instead of the settings-built one
        market_data: Market data provider
        oracle: Resolution oracle; defaults to market_data when it implements one
    """
    global _state_manager, _market_data, _oracle
    if state_manager is not None:
        _state_manager = state_manager
    if market_data is not None:
        _market_data = market_data
        if oracle is None and hasattr(market_data, "get_resolution_status"):
            oracle = market_data
    if oracle is not None:
        _oracle = oracle


def reset() -> None:
    """Forget every installed collaborator."""
    global _state_manager, _market_data, _oracle
    _state_manager = None
    _market_data = None
    _oracle = None


def get_market_data() -> MarketDataProvider:
    """Get the market data provider (in-memory catalog unless configured)."""
    global _market_data, _oracle
    if _market_data is None:
        memory = InMemoryMarketData()
        _market_data = memory
        if _oracle is None:
            _oracle = memory
        logger.warning("No market data provider configured; using empty in-memory catalog")
    return _market_data


def get_oracle() -> ResolutionOracle:
    """Get the resolution oracle."""
    if _oracle is None:
        get_market_data()
    return _oracle


# Service dependencies

def get_evaluator() -> ChallengeEvaluator:
    """Get ChallengeEvaluator instance."""
    return ChallengeEvaluator(get_state_manager(), get_market_data(), get_settings())


def get_trade_executor() -> TradeExecutor:
    """Get TradeExecutor instance."""
    return TradeExecutor(
        get_state_manager(),
        get_market_data(),
        get_oracle(),
        settings=get_settings(),
        evaluator=get_evaluator(),
    )


def get_daily_reset_job() -> DailyResetJob:
    """Get DailyResetJob instance."""
    return DailyResetJob(get_state_manager(), get_evaluator())


def get_settlement_service() -> SettlementService:
    """Get SettlementService instance."""
    return SettlementService(get_state_manager(), get_oracle(), evaluator=get_evaluator())


def get_balance_auditor() -> BalanceAuditor:
    """Get BalanceAuditor instance."""
    return BalanceAuditor(get_state_manager())


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require ``Authorization: Bearer <cron_secret>`` when a secret is configured.

    Raises:
        APIError: 401 when the header is missing or wrong
    """
    secret = get_settings().cron_secret
    if secret and authorization != f"Bearer {secret}":
        raise APIError("Unauthorized", status_code=401)
