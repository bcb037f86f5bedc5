from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from widgetgate.core.clock import Clock, utc_now
from widgetgate.db.session import get_session, lookup_session
from widgetgate.services.key_issuer import KeyIssuer
from widgetgate.services.key_store import SqlWidgetKeyStore, WidgetKeyStore
from widgetgate.services.lead_capture import LeadCaptureService
from widgetgate.services.lead_store import LeadStore, SqlLeadStore
from widgetgate.services.notifier import Notifier, build_notifier
from widgetgate.services.subscriptions import SqlSubscriptionStatusProvider, SubscriptionStatusProvider
from widgetgate.services.usage_log import SqlUsageLog, UsageLog
from widgetgate.services.validator import WidgetValidator

_notifier: Optional[Notifier] = None


def get_clock() -> Clock:
    return utc_now


async def get_key_store(session: AsyncSession = Depends(get_session)) -> WidgetKeyStore:
    return SqlWidgetKeyStore(session)


async def get_usage_log(session: AsyncSession = Depends(get_session)) -> UsageLog:
    return SqlUsageLog(session)


async def get_subscription_provider() -> SubscriptionStatusProvider:
    return SqlSubscriptionStatusProvider(lookup_session)


async def get_lead_store(session: AsyncSession = Depends(get_session)) -> LeadStore:
    return SqlLeadStore(session)


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


async def get_validator(
    key_store: WidgetKeyStore = Depends(get_key_store),
    usage_log: UsageLog = Depends(get_usage_log),
    subscriptions: SubscriptionStatusProvider = Depends(get_subscription_provider),
    clock: Clock = Depends(get_clock),
) -> WidgetValidator:
    return WidgetValidator(key_store, usage_log, subscriptions, clock=clock)


async def get_key_issuer(key_store: WidgetKeyStore = Depends(get_key_store)) -> KeyIssuer:
    return KeyIssuer(key_store)


async def get_lead_capture_service(
    key_store: WidgetKeyStore = Depends(get_key_store),
    lead_store: LeadStore = Depends(get_lead_store),
    usage_log: UsageLog = Depends(get_usage_log),
    clock: Clock = Depends(get_clock),
) -> LeadCaptureService:
    return LeadCaptureService(key_store, lead_store, usage_log, clock=clock)


def client_ip(request: Request) -> Optional[str]:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or None
    return request.client.host if request.client else None
