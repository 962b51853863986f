"""Middleware package."""

from accessguard.api.middleware.request_id import RequestIdMiddleware, get_request_id
from accessguard.api.middleware.logging import LoggingMiddleware

__all__ = [
    "RequestIdMiddleware",
    "get_request_id",
    "LoggingMiddleware",
]
