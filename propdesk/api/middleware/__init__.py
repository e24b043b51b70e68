"""HTTP middleware: error mapping and request logging."""

from propdesk.api.middleware.error_handler import APIError, ErrorHandlerMiddleware
from propdesk.api.middleware.logging import RequestLoggingMiddleware

__all__ = [
    "APIError",
    "ErrorHandlerMiddleware",
    "RequestLoggingMiddleware",
]
