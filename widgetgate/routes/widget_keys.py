from __future__ import annotations

import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from widgetgate.core.clock import Clock
from widgetgate.core.exceptions import NotFoundError, ValidationError
from widgetgate.core.logging import get_structlog_logger
from widgetgate.middleware.auth import get_current_contractor
from widgetgate.routes.deps import get_clock, get_key_store, get_usage_log
from widgetgate.schemas.widget_keys import (
    CalculatorTypeList,
    WidgetKeyList,
    WidgetKeyOut,
    WidgetKeyUpdateRequest,
    WidgetKeyUsage,
)
from widgetgate.services.calculators import ISSUABLE_CALCULATOR_TYPES
from widgetgate.services.key_issuer import normalize_domain
from widgetgate.services.key_store import KeySettingsUpdate, WidgetKeyStore
from widgetgate.services.usage_log import UsageLog

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["widget-keys"])


@router.get("/calculator-types", response_model=CalculatorTypeList)
async def list_calculator_types() -> CalculatorTypeList:
    return CalculatorTypeList(calculator_types=list(ISSUABLE_CALCULATOR_TYPES))


@router.get("/widget-keys", response_model=WidgetKeyList)
async def list_widget_keys(
    contractor_id: uuid.UUID = Depends(get_current_contractor),
    key_store: WidgetKeyStore = Depends(get_key_store),
) -> WidgetKeyList:
    records = await key_store.list_for_contractor(contractor_id)
    return WidgetKeyList(keys=[WidgetKeyOut.from_record(r) for r in records])


@router.patch("/widget-keys/{key_id}", response_model=WidgetKeyOut)
async def update_widget_key(
    key_id: uuid.UUID,
    body: WidgetKeyUpdateRequest,
    contractor_id: uuid.UUID = Depends(get_current_contractor),
    key_store: WidgetKeyStore = Depends(get_key_store),
) -> WidgetKeyOut:
    clear_domain = body.domain is not None and normalize_domain(body.domain) is None
    update = KeySettingsUpdate(
        is_active=body.is_active,
        rate_limit_per_minute=body.rate_limit_per_minute,
        domain=None if clear_domain else normalize_domain(body.domain),
        clear_domain=clear_domain,
    )
    if update.is_empty:
        raise ValidationError("No changes supplied. Expected isActive, domain or rateLimitPerMinute.")

    record = await key_store.update_settings(key_id, contractor_id, update)
    # Keys of other contractors are indistinguishable from missing ones.
    if record is None:
        raise NotFoundError("Widget key not found")

    logger.info(
        "widget_key.updated",
        widget_key_id=str(key_id),
        contractor_id=str(contractor_id),
        is_active=record.is_active,
        rate_limit_per_minute=record.rate_limit_per_minute,
        domain_locked=record.domain is not None,
    )
    return WidgetKeyOut.from_record(record)


@router.get("/widget-keys/{key_id}/usage", response_model=WidgetKeyUsage)
async def widget_key_usage(
    key_id: uuid.UUID,
    minutes: int = Query(default=60, ge=1, le=10080),
    contractor_id: uuid.UUID = Depends(get_current_contractor),
    key_store: WidgetKeyStore = Depends(get_key_store),
    usage_log: UsageLog = Depends(get_usage_log),
    clock: Clock = Depends(get_clock),
) -> WidgetKeyUsage:
    record = await key_store.get_for_contractor(key_id, contractor_id)
    if record is None:
        raise NotFoundError("Widget key not found")

    by_result = await usage_log.summarize(record.id, clock() - timedelta(minutes=minutes))
    return WidgetKeyUsage(
        widget_key_id=record.id,
        window_minutes=minutes,
        total=sum(by_result.values()),
        by_result=by_result,
    )
