from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from widgetgate.core.exceptions import StoreError

WIDGET_SOURCE = "website_widget"
NEW = "new"


@dataclass(frozen=True)
class LeadRecord:
    contractor_id: uuid.UUID
    widget_key_id: uuid.UUID
    calculator_type: str
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    project_details: Dict[str, Any] = field(default_factory=dict)
    estimated_value: Optional[Decimal] = None
    source: str = WIDGET_SOURCE
    status: str = NEW
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class LeadStore(Protocol):
    async def insert(self, lead: LeadRecord) -> uuid.UUID: ...


_SQL_INSERT_LEAD = text(
    """
    INSERT INTO leads (
      id, contractor_id, widget_key_id, source, calculator_type,
      name, email, phone, address, project_details, estimated_value, status
    )
    VALUES (
      :id, :contractor_id, :widget_key_id, :source, :calculator_type,
      :name, :email, :phone, :address, CAST(:project_details AS JSONB), :estimated_value, :status
    )
    RETURNING id
"""
)


class SqlLeadStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, lead: LeadRecord) -> uuid.UUID:
        params = {
            "id": lead.id,
            "contractor_id": lead.contractor_id,
            "widget_key_id": lead.widget_key_id,
            "source": lead.source,
            "calculator_type": lead.calculator_type,
            "name": lead.name,
            "email": lead.email,
            "phone": lead.phone,
            "address": lead.address,
            "project_details": json.dumps(lead.project_details, default=str),
            "estimated_value": lead.estimated_value,
            "status": lead.status,
        }
        try:
            res = await self.session.execute(_SQL_INSERT_LEAD, params)
            lead_id = res.scalar_one()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError("leads.insert", str(e)) from e
        return lead_id
