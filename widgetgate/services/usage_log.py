from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from widgetgate.core.exceptions import StoreError

# Result values that are not admission denials.
SUCCESS = "success"
LEAD_CAPTURED = "lead_captured"

_MAX_ERROR_MESSAGE = 500


@dataclass(frozen=True)
class UsageLogEntry:
    validation_result: str
    created_at: datetime
    widget_key_id: Optional[uuid.UUID] = None
    contractor_id: Optional[uuid.UUID] = None
    calculator_type: Optional[str] = None
    visitor_ip: Optional[str] = None
    referer: Optional[str] = None
    domain: Optional[str] = None
    error_message: Optional[str] = None


class UsageLog(Protocol):
    async def append(self, entry: UsageLogEntry) -> None: ...

    async def count_since(self, widget_key_id: uuid.UUID, since: datetime) -> int: ...

    async def summarize(self, widget_key_id: uuid.UUID, since: datetime) -> Dict[str, int]: ...


_SQL_APPEND = text(
    """
    INSERT INTO widget_usage_logs (
      id, widget_key_id, contractor_id, calculator_type, validation_result,
      visitor_ip, referer, domain, error_message, created_at
    )
    VALUES (
      :id, :widget_key_id, :contractor_id, :calculator_type, :validation_result,
      :visitor_ip, :referer, :domain, :error_message, :created_at
    )
"""
)

# Every attempt counts toward the window, denied ones included.
_SQL_COUNT_SINCE = text(
    """
    SELECT COUNT(*) AS attempts
    FROM widget_usage_logs
    WHERE widget_key_id = :widget_key_id
      AND created_at >= :since
"""
)

_SQL_SUMMARIZE = text(
    """
    SELECT validation_result, COUNT(*) AS attempts
    FROM widget_usage_logs
    WHERE widget_key_id = :widget_key_id
      AND created_at >= :since
    GROUP BY validation_result
    ORDER BY validation_result
"""
)


class SqlUsageLog:
    """Append-only usage log over ``widget_usage_logs``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, entry: UsageLogEntry) -> None:
        error_message = entry.error_message
        if error_message and len(error_message) > _MAX_ERROR_MESSAGE:
            error_message = error_message[:_MAX_ERROR_MESSAGE]

        params = {
            "id": uuid.uuid4(),
            "widget_key_id": entry.widget_key_id,
            "contractor_id": entry.contractor_id,
            "calculator_type": entry.calculator_type,
            "validation_result": entry.validation_result,
            "visitor_ip": entry.visitor_ip,
            "referer": entry.referer,
            "domain": entry.domain,
            "error_message": error_message,
            "created_at": entry.created_at,
        }
        try:
            await self.session.execute(_SQL_APPEND, params)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError("widget_usage_logs.append", str(e)) from e

    async def count_since(self, widget_key_id: uuid.UUID, since: datetime) -> int:
        try:
            res = await self.session.execute(
                _SQL_COUNT_SINCE, {"widget_key_id": widget_key_id, "since": since}
            )
            value = res.scalar()
        except SQLAlchemyError as e:
            raise StoreError("widget_usage_logs.count_since", str(e)) from e
        return int(value or 0)

    async def summarize(self, widget_key_id: uuid.UUID, since: datetime) -> Dict[str, int]:
        try:
            res = await self.session.execute(
                _SQL_SUMMARIZE, {"widget_key_id": widget_key_id, "since": since}
            )
            rows = res.fetchall()
        except SQLAlchemyError as e:
            raise StoreError("widget_usage_logs.summarize", str(e)) from e
        return {row.validation_result: int(row.attempts) for row in rows}
