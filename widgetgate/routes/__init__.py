# widgetgate/routes/__init__.py
"""
API route handlers organized by domain.
"""

from widgetgate.routes.embed import router as embed_router
from widgetgate.routes.health import router as health_router
from widgetgate.routes.widget_keys import router as widget_keys_router
from widgetgate.routes.widgets import router as widgets_router

__all__ = [
    "embed_router",
    "health_router",
    "widget_keys_router",
    "widgets_router",
]
