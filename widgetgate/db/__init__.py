# widgetgate/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from widgetgate.db.base import Base
from widgetgate.db.session import get_session

__all__ = [
    "Base",
    "get_session",
]
