# widgetgate/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from widgetgate.models.contractor import Contractor
from widgetgate.models.lead import Lead
from widgetgate.models.subscription import Subscription
from widgetgate.models.widget_key import WidgetKey
from widgetgate.models.widget_usage_log import WidgetUsageLog

__all__ = [
    "Contractor",
    "Lead",
    "Subscription",
    "WidgetKey",
    "WidgetUsageLog",
]
