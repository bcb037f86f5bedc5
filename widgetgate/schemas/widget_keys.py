# widgetgate/schemas/widget_keys.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from widgetgate.services.key_store import WidgetKeyRecord


class WidgetKeyOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: uuid.UUID
    widget_key: str = Field(alias="widgetKey")
    calculator_type: str = Field(alias="calculatorType")
    domain: Optional[str] = None
    is_active: bool = Field(alias="isActive")
    rate_limit_per_minute: int = Field(alias="rateLimitPerMinute")
    usage_count: int = Field(alias="usageCount")
    last_used_at: Optional[datetime] = Field(default=None, alias="lastUsedAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @classmethod
    def from_record(cls, record: WidgetKeyRecord) -> "WidgetKeyOut":
        return cls(
            id=record.id,
            widget_key=record.key,
            calculator_type=record.calculator_type,
            domain=record.domain,
            is_active=record.is_active,
            rate_limit_per_minute=record.rate_limit_per_minute,
            usage_count=record.usage_count,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
        )


class WidgetKeyList(BaseModel):
    success: bool = True
    keys: List[WidgetKeyOut]


class WidgetKeyUpdateRequest(BaseModel):
    """Only these settings are mutable; the key string and calculator type never change."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    is_active: Optional[bool] = Field(default=None, alias="isActive")
    # Empty string clears the domain lock.
    domain: Optional[str] = Field(default=None, max_length=255)
    rate_limit_per_minute: Optional[int] = Field(default=None, alias="rateLimitPerMinute", ge=1, le=10000)


class WidgetKeyUsage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    widget_key_id: uuid.UUID = Field(alias="widgetKeyId")
    window_minutes: int = Field(alias="windowMinutes")
    total: int
    by_result: Dict[str, int] = Field(alias="byResult")


class CalculatorTypeList(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    calculator_types: List[str] = Field(alias="calculatorTypes")
