# widgetgate/schemas/widget.py
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class WidgetValidateRequest(BaseModel):
    """Body sent by the embed loader on every page load."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    # Presence is checked by the route so a missing field still gets a typed denial body.
    widget_key: Optional[str] = Field(default=None, alias="widgetKey", max_length=128)
    calculator_type: Optional[str] = Field(default=None, alias="calculatorType", max_length=64)
    domain: Optional[str] = Field(default=None, max_length=255)
    visitor_ip: Optional[str] = Field(default=None, alias="visitorIp", max_length=64)
    referer: Optional[str] = Field(default=None, max_length=2048)


class ContractorSummary(BaseModel):
    id: uuid.UUID
    business_name: Optional[str] = None
    email: Optional[str] = None


class WidgetValidateAllowed(BaseModel):
    valid: bool = True
    contractor: ContractorSummary


class WidgetValidateDenied(BaseModel):
    valid: bool = False
    reason: str
    error: str


class KeyGenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    calculator_type: Optional[str] = Field(default=None, alias="calculatorType", max_length=64)
    domain: Optional[str] = Field(default=None, max_length=255)


class KeyGenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    widget_key: str = Field(alias="widgetKey")
    embed_code: str = Field(alias="embedCode")


class LeadCaptureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    widget_key: Optional[str] = Field(default=None, alias="widgetKey", max_length=128)
    calculator_type: Optional[str] = Field(default=None, alias="calculatorType", max_length=64)
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    address: Optional[str] = Field(default=None, max_length=1000)
    project_details: Optional[Dict[str, Any]] = Field(default=None, alias="projectDetails")
    estimated_value: Optional[Decimal] = Field(default=None, alias="estimatedValue", max_digits=12, decimal_places=2)


class LeadCaptureResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    lead_id: uuid.UUID = Field(alias="leadId")
