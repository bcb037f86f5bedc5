"""
Lead capture from embedded widgets.

Only key existence and the active flag are re-checked here. The iframe that
submits a lead was mounted after a full admission check, and its origin is
served by this system, so subscription, domain and rate checks are not
repeated on submission. The owning contractor always comes from the key.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from widgetgate.core.clock import Clock, utc_now
from widgetgate.core.exceptions import AuthorizationError, DatabaseError, NotFoundError, StoreError, ValidationError
from widgetgate.core.logging import get_structlog_logger
from widgetgate.services import metrics
from widgetgate.services.key_store import WidgetKeyRecord, WidgetKeyStore
from widgetgate.services.lead_store import LeadRecord, LeadStore
from widgetgate.services.notifier import LeadNotification
from widgetgate.services.usage_log import LEAD_CAPTURED, UsageLog, UsageLogEntry

logger = get_structlog_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_FIELDS = ("widgetKey", "calculatorType", "name", "email")


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


@dataclass(frozen=True)
class LeadSubmission:
    widget_key: Optional[str]
    calculator_type: Optional[str]
    name: Optional[str]
    email: Optional[str]
    phone: Optional[str] = None
    address: Optional[str] = None
    project_details: Dict[str, Any] = field(default_factory=dict)
    estimated_value: Optional[Decimal] = None
    visitor_ip: Optional[str] = None
    referer: Optional[str] = None


@dataclass(frozen=True)
class CapturedLead:
    lead_id: uuid.UUID
    key: WidgetKeyRecord
    notification: LeadNotification


def validate_submission(submission: LeadSubmission) -> None:
    """Raise ``ValidationError`` for missing or malformed input."""
    values = {
        "widgetKey": submission.widget_key,
        "calculatorType": submission.calculator_type,
        "name": submission.name,
        "email": submission.email,
    }
    missing: List[str] = [name for name in REQUIRED_FIELDS if not (values[name] or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(REQUIRED_FIELDS)}",
            details={"missing": missing},
        )
    if not is_valid_email(submission.email.strip()):
        raise ValidationError("Invalid email format", details={"field": "email"})
    if submission.estimated_value is not None and submission.estimated_value < 0:
        raise ValidationError("estimatedValue must not be negative", details={"field": "estimatedValue"})


class LeadCaptureService:
    def __init__(
        self,
        key_store: WidgetKeyStore,
        lead_store: LeadStore,
        usage_log: UsageLog,
        clock: Clock = utc_now,
    ) -> None:
        self.key_store = key_store
        self.lead_store = lead_store
        self.usage_log = usage_log
        self.clock = clock

    async def capture(self, submission: LeadSubmission) -> CapturedLead:
        validate_submission(submission)

        try:
            key = await self.key_store.get_by_key(submission.widget_key.strip())
        except StoreError as e:
            logger.error("lead.key_lookup_failed", operation=e.operation, error=e.message)
            raise DatabaseError("Internal server error. Please try again later.") from e

        if key is None:
            raise NotFoundError("Invalid widget key", code="invalid_key")
        if not key.is_active:
            raise AuthorizationError("Widget key is disabled", code="key_disabled")

        now = self.clock()
        lead = LeadRecord(
            contractor_id=key.contractor_id,
            widget_key_id=key.id,
            calculator_type=submission.calculator_type,
            name=submission.name.strip(),
            email=submission.email.strip(),
            phone=submission.phone or None,
            address=submission.address or None,
            project_details=submission.project_details or {},
            estimated_value=submission.estimated_value,
        )
        try:
            lead_id = await self.lead_store.insert(lead)
        except StoreError as e:
            logger.error("lead.insert_failed", widget_key_id=str(key.id), error=e.message)
            raise DatabaseError("Failed to save lead. Please try again.") from e

        await self._append_log(key, submission, now)

        metrics.WIDGET_LEADS_CAPTURED.labels(calculator_type=lead.calculator_type).inc()
        logger.info(
            "lead.captured",
            lead_id=str(lead_id),
            contractor_id=str(key.contractor_id),
            widget_key_id=str(key.id),
            calculator_type=lead.calculator_type,
        )

        contractor = key.contractor
        notification = LeadNotification(
            lead_id=lead_id,
            contractor_id=key.contractor_id,
            widget_key_id=key.id,
            calculator_type=lead.calculator_type,
            name=lead.name,
            email=lead.email,
            captured_at=now,
            contractor_email=contractor.email if contractor else None,
            contractor_business_name=contractor.business_name if contractor else None,
            phone=lead.phone,
            address=lead.address,
            estimated_value=lead.estimated_value,
            project_details=lead.project_details,
        )
        return CapturedLead(lead_id=lead_id, key=key, notification=notification)

    async def _append_log(self, key: WidgetKeyRecord, submission: LeadSubmission, now) -> None:
        entry = UsageLogEntry(
            validation_result=LEAD_CAPTURED,
            created_at=now,
            widget_key_id=key.id,
            contractor_id=key.contractor_id,
            calculator_type=submission.calculator_type,
            visitor_ip=submission.visitor_ip,
            referer=submission.referer,
        )
        try:
            await self.usage_log.append(entry)
        except Exception as e:
            metrics.BEST_EFFORT_FAILURES.labels(operation="usage_log_append").inc()
            logger.warning("usage_log.write_failed", validation_result=LEAD_CAPTURED, error=str(e))
