# widgetgate/services/__init__.py
"""
Admission control, key issuance and lead capture for embedded widgets.
"""

from widgetgate.services.key_issuer import IssuedKey, KeyIssuer, generate_widget_key
from widgetgate.services.lead_capture import CapturedLead, LeadCaptureService, LeadSubmission
from widgetgate.services.validator import (
    Allowed,
    Decision,
    Denied,
    ReasonCode,
    ValidationRequest,
    WidgetValidator,
)

__all__ = [
    # Validation
    "Allowed",
    "Decision",
    "Denied",
    "ReasonCode",
    "ValidationRequest",
    "WidgetValidator",
    # Issuance
    "IssuedKey",
    "KeyIssuer",
    "generate_widget_key",
    # Lead capture
    "CapturedLead",
    "LeadCaptureService",
    "LeadSubmission",
]
