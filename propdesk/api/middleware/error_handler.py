"""Global error handling middleware.

Engine errors map onto HTTP statuses:

    ValidationError                         -> 422
    ChallengeNotFound / PositionNotFound    -> 404
    InsufficientShares                      -> 400
    MarketResolved                          -> 409
    any other DomainRejection               -> 400
    StorageError                            -> 503
    anything else                           -> 500 (logged with traceback)
"""

import logging
import traceback
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from propdesk.execution.errors import (
    ChallengeNotFoundError,
    DomainRejection,
    InsufficientSharesError,
    MarketResolvedError,
    PositionNotFoundError,
    PropDeskError,
    StorageError,
    ValidationError,
)
from propdesk.utils.logger import get_api_logger

logger = logging.getLogger(__name__)
api_log = get_api_logger()


class APIError(Exception):
    """Custom API error with status code."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        detail: dict | None = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            detail: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


def status_for(exc: PropDeskError) -> int:
    """HTTP status for an engine error."""
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, InsufficientSharesError):
        return 400
    if isinstance(exc, (ChallengeNotFoundError, PositionNotFoundError)):
        return 404
    if isinstance(exc, MarketResolvedError):
        return 409
    if isinstance(exc, DomainRejection):
        return 400
    if isinstance(exc, StorageError):
        return 503
    return 500


async def error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle exceptions and return appropriate JSON response.

    Args:
        request: Request that caused the error
        exc: Exception that was raised

    Returns:
        JSON error response
    """
    if isinstance(exc, APIError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "detail": exc.detail,
            },
        )

    if isinstance(exc, PropDeskError):
        status_code = status_for(exc)
        if isinstance(exc, StorageError):
            logger.error(f"Storage error in {request.method} {request.url.path}: {exc}")
        else:
            api_log.info(
                f"Rejected {request.method} {request.url.path}: {exc.reason}",
                extra_data={"code": exc.code, "status": status_code},
            )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.reason,
                "detail": {"code": exc.code},
            },
        )

    logger.error(
        f"Unhandled error in {request.method} {request.url.path}: {exc}\n"
        f"{traceback.format_exc()}"
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
            "detail": None,
        },
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for catching and handling all errors."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """Process request and handle any errors.

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response or error response
        """
        try:
            return await call_next(request)
        except Exception as exc:
            return await error_handler(request, exc)
