from __future__ import annotations

import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import aiohttp

from widgetgate.core.config import Settings, settings
from widgetgate.core.logging import get_structlog_logger
from widgetgate.services import metrics

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class LeadNotification:
    lead_id: uuid.UUID
    contractor_id: uuid.UUID
    widget_key_id: uuid.UUID
    calculator_type: str
    name: str
    email: str
    captured_at: datetime
    contractor_email: Optional[str] = None
    contractor_business_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    estimated_value: Optional[Decimal] = None
    project_details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "event": "lead.captured",
            "lead_id": str(self.lead_id),
            "contractor_id": str(self.contractor_id),
            "widget_key_id": str(self.widget_key_id),
            "calculator_type": self.calculator_type,
            "contact": {
                "name": self.name,
                "email": self.email,
            },
            "project_details": self.project_details,
            "timestamp": self.captured_at.isoformat(),
        }
        if self.phone:
            payload["contact"]["phone"] = self.phone
        if self.address:
            payload["contact"]["address"] = self.address
        if self.estimated_value is not None:
            payload["estimated_value"] = str(self.estimated_value)
        if self.contractor_email:
            payload["recipient"] = {
                "email": self.contractor_email,
                "business_name": self.contractor_business_name,
            }
        return payload


class Notifier(Protocol):
    async def notify_lead(self, notification: LeadNotification) -> None: ...


def generate_webhook_signature(payload: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class ConsoleNotifier:
    """Writes the notification to the structured log. Default provider."""

    async def notify_lead(self, notification: LeadNotification) -> None:
        logger.info(
            "lead.notification",
            lead_id=str(notification.lead_id),
            contractor_id=str(notification.contractor_id),
            calculator_type=notification.calculator_type,
            recipient=notification.contractor_email,
        )


class WebhookNotifier:
    def __init__(self, url: str, secret: Optional[str] = None, timeout: int = 10) -> None:
        self.url = url
        self.secret = secret
        self.timeout = timeout

    async def notify_lead(self, notification: LeadNotification) -> None:
        """POST the lead to the configured webhook. Failures are logged, never raised."""
        payload_json = json.dumps(notification.to_payload(), sort_keys=True, default=str)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "WidgetGate-Notifier/1.0",
        }
        if self.secret:
            signature = generate_webhook_signature(payload_json, self.secret)
            headers["X-Webhook-Signature"] = f"sha256={signature}"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    data=payload_json,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if 200 <= response.status < 300:
                        logger.info(
                            "lead.notification_delivered",
                            lead_id=str(notification.lead_id),
                            http_status=response.status,
                        )
                        return
                    body = await response.text()
                    error = f"HTTP {response.status}: {body[:200]}"
        except Exception as e:
            error = str(e) or e.__class__.__name__

        metrics.BEST_EFFORT_FAILURES.labels(operation="lead_notification").inc()
        logger.warning(
            "lead.notification_failed",
            lead_id=str(notification.lead_id),
            error=error,
        )


def build_notifier(config: Settings = settings) -> Notifier:
    if config.notifier_provider == "webhook":
        if not config.notifier_webhook_url:
            logger.warning("lead.notifier_misconfigured", provider="webhook", fallback="console")
            return ConsoleNotifier()
        return WebhookNotifier(
            url=config.notifier_webhook_url,
            secret=config.notifier_webhook_secret,
            timeout=config.notifier_timeout_seconds,
        )
    return ConsoleNotifier()
