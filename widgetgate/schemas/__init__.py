# widgetgate/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from widgetgate.schemas.widget import (
    KeyGenerateRequest,
    KeyGenerateResponse,
    LeadCaptureRequest,
    LeadCaptureResponse,
    WidgetValidateRequest,
)
from widgetgate.schemas.widget_keys import WidgetKeyOut, WidgetKeyUpdateRequest

__all__ = [
    "KeyGenerateRequest",
    "KeyGenerateResponse",
    "LeadCaptureRequest",
    "LeadCaptureResponse",
    "WidgetValidateRequest",
    "WidgetKeyOut",
    "WidgetKeyUpdateRequest",
]
