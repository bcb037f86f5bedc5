# widgetgate/core/__init__.py
"""
Core package for configuration, logging, and shared utilities.
"""

from widgetgate.core.clock import utc_now
from widgetgate.core.config import Settings, settings
from widgetgate.core.logging import configure_structlog, get_structlog_logger

__all__ = [
    "Settings",
    "settings",
    "configure_structlog",
    "get_structlog_logger",
    "utc_now",
]
