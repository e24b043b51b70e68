"""Health check endpoints."""

import logging
from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import inspect

from propdesk.api.dependencies import get_state_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

REQUIRED_TABLES = ["challenges", "positions", "trades"]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict
    timestamp: str


@router.get("/health", response_model=HealthResponse)
def health_check():
    """Basic health check endpoint.

    Returns service health status.
    """
    try:
        get_state_manager().ping()

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now().isoformat(),
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return HealthResponse(
            status="unhealthy",
            database=f"error: {str(e)}",
            timestamp=datetime.now().isoformat(),
        )


@router.get("/ready", response_model=ReadyResponse)
def readiness_check():
    """Readiness check endpoint.

    Verifies the database is reachable and the schema is in place.
    """
    checks = {
        "database": False,
        "tables": False,
    }

    try:
        state_manager = get_state_manager()
        state_manager.ping()
        checks["database"] = True

        tables = inspect(state_manager._get_engine()).get_table_names()
        checks["tables"] = all(t in tables for t in REQUIRED_TABLES)

    except Exception as e:
        logger.error(f"Readiness check failed: {e}")

    return ReadyResponse(
        ready=all(checks.values()),
        checks=checks,
        timestamp=datetime.now().isoformat(),
    )
