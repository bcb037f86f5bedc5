# widgetgate/middleware/__init__.py
"""
ASGI middleware: request ids, access logging, JWT auth and edge throttling.
"""

from widgetgate.middleware.auth import AuthMiddleware, TokenManager, get_current_contractor
from widgetgate.middleware.logging import LoggingMiddleware
from widgetgate.middleware.rate_limiter import RateLimitingMiddleware
from widgetgate.middleware.request_id import RequestIdMiddleware

__all__ = [
    "AuthMiddleware",
    "LoggingMiddleware",
    "RateLimitingMiddleware",
    "RequestIdMiddleware",
    "TokenManager",
    "get_current_contractor",
]
