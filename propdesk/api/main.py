"""FastAPI application factory for the PropDesk engine.

This module creates and configures the FastAPI application with:
- REST API endpoints (versioned at /api/v1/)
- Cron trigger endpoints guarded by a bearer secret
- CORS middleware
- Request logging
- Error handling
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from propdesk.api.dependencies import close_state_manager, get_state_manager
from propdesk.api.middleware.error_handler import APIError, ErrorHandlerMiddleware, error_handler
from propdesk.api.middleware.logging import RequestLoggingMiddleware
from propdesk.api.routers.challenges import router as challenges_router
from propdesk.api.routers.cron import router as cron_router
from propdesk.api.routers.health import router as health_router
from propdesk.api.routers.trades import router as trades_router
from propdesk.config.settings import get_settings
from propdesk.execution.errors import PropDeskError
from propdesk.utils.logger import setup_logger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown tasks.
    """
    logger.info("Starting PropDesk API server...")

    # Initialize database connection (creates the schema on first run)
    get_state_manager()

    logger.info("PropDesk API server started successfully")

    yield

    logger.info("Shutting down PropDesk API server...")
    close_state_manager()
    logger.info("PropDesk API server shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    setup_logger(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        log_dir=settings.log_dir,
        json_format=settings.json_logs,
    )

    app = FastAPI(
        title="PropDesk Challenge Engine",
        description="""
## Overview

Risk and execution engine for funded-trader challenges on binary
prediction markets.

## REST Endpoints

All REST endpoints are versioned at `/api/v1/`:

- **Trades**: `/api/v1/trades` - Market order execution and trade ledger
- **Challenges**: `/api/v1/challenges` - Challenge state, positions and evaluation
- **Cron**: `/api/v1/cron/*` - Daily reset, evaluation sweep, settlement and balance audit

Rejected trades return a JSON body with a stable `detail.code`.
        """,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add custom middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)

    app.add_exception_handler(PropDeskError, error_handler)
    app.add_exception_handler(APIError, error_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(trades_router)
    app.include_router(challenges_router)
    app.include_router(cron_router)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "propdesk.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
