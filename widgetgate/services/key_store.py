from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from widgetgate.core.clock import ensure_aware
from widgetgate.core.exceptions import KeyCollisionError, StoreError

UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True)
class ContractorInfo:
    id: uuid.UUID
    business_name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class WidgetKeyRecord:
    id: uuid.UUID
    key: str
    contractor_id: uuid.UUID
    calculator_type: str
    domain: Optional[str] = None
    is_active: bool = True
    rate_limit_per_minute: int = 100
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    contractor: Optional[ContractorInfo] = field(default=None, compare=False)


@dataclass(frozen=True)
class KeySettingsUpdate:
    """Mutable settings of a key. ``None`` leaves a field untouched."""

    is_active: Optional[bool] = None
    rate_limit_per_minute: Optional[int] = None
    domain: Optional[str] = None
    clear_domain: bool = False

    @property
    def is_empty(self) -> bool:
        return (
            self.is_active is None
            and self.rate_limit_per_minute is None
            and self.domain is None
            and not self.clear_domain
        )


class WidgetKeyStore(Protocol):
    async def get_by_key(self, key: str) -> Optional[WidgetKeyRecord]: ...

    async def get_for_contractor(self, key_id: uuid.UUID, contractor_id: uuid.UUID) -> Optional[WidgetKeyRecord]: ...

    async def list_for_contractor(self, contractor_id: uuid.UUID) -> List[WidgetKeyRecord]: ...

    async def insert(self, record: WidgetKeyRecord) -> WidgetKeyRecord: ...

    async def record_use(self, key_id: uuid.UUID, used_at: datetime) -> None: ...

    async def update_settings(
        self, key_id: uuid.UUID, contractor_id: uuid.UUID, update: KeySettingsUpdate
    ) -> Optional[WidgetKeyRecord]: ...


_KEY_COLUMNS = """
      k.id,
      k.widget_key,
      k.contractor_id,
      k.calculator_type,
      k.domain,
      k.is_active,
      k.rate_limit_per_minute,
      k.usage_count,
      k.last_used_at,
      k.created_at
"""

_SQL_BY_KEY = text(
    f"""
    SELECT
      {_KEY_COLUMNS},
      c.business_name AS contractor_business_name,
      c.email AS contractor_email
    FROM widget_keys k
    LEFT JOIN contractors c ON c.id = k.contractor_id
    WHERE k.widget_key = :widget_key
    LIMIT 1
"""
)

_SQL_BY_ID_FOR_CONTRACTOR = text(
    f"""
    SELECT {_KEY_COLUMNS}
    FROM widget_keys k
    WHERE k.id = :key_id
      AND k.contractor_id = :contractor_id
    LIMIT 1
"""
)

_SQL_LIST_FOR_CONTRACTOR = text(
    f"""
    SELECT {_KEY_COLUMNS}
    FROM widget_keys k
    WHERE k.contractor_id = :contractor_id
    ORDER BY k.created_at DESC
"""
)

_SQL_INSERT = text(
    """
    INSERT INTO widget_keys (
      id, widget_key, contractor_id, calculator_type, domain,
      is_active, rate_limit_per_minute, usage_count
    )
    VALUES (
      :id, :widget_key, :contractor_id, :calculator_type, :domain,
      :is_active, :rate_limit_per_minute, 0
    )
    RETURNING created_at
"""
)

# Lost updates under concurrency are acceptable; usage_count is informational.
_SQL_RECORD_USE = text(
    """
    UPDATE widget_keys
    SET last_used_at = :used_at,
        usage_count = usage_count + 1
    WHERE id = :key_id
"""
)

_SQL_UPDATE_SETTINGS = text(
    f"""
    UPDATE widget_keys k
    SET is_active = COALESCE(:is_active, k.is_active),
        rate_limit_per_minute = COALESCE(:rate_limit_per_minute, k.rate_limit_per_minute),
        domain = CASE
          WHEN :clear_domain THEN NULL
          ELSE COALESCE(:domain, k.domain)
        END,
        updated_at = CURRENT_TIMESTAMP
    WHERE k.id = :key_id
      AND k.contractor_id = :contractor_id
    RETURNING {_KEY_COLUMNS}
"""
)


def _row_to_record(row: Any, with_contractor: bool = False) -> WidgetKeyRecord:
    contractor = None
    if with_contractor:
        contractor = ContractorInfo(
            id=row.contractor_id,
            business_name=row.contractor_business_name,
            email=row.contractor_email,
        )
    return WidgetKeyRecord(
        id=row.id,
        key=row.widget_key,
        contractor_id=row.contractor_id,
        calculator_type=row.calculator_type,
        domain=row.domain,
        is_active=bool(row.is_active),
        rate_limit_per_minute=int(row.rate_limit_per_minute),
        usage_count=int(row.usage_count or 0),
        last_used_at=ensure_aware(row.last_used_at) if row.last_used_at else None,
        created_at=ensure_aware(row.created_at) if row.created_at else None,
        contractor=contractor,
    )


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is None:
        return "unique" in str(orig).lower()
    return code == UNIQUE_VIOLATION


class SqlWidgetKeyStore:
    """Key Store over the ``widget_keys`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_key(self, key: str) -> Optional[WidgetKeyRecord]:
        try:
            res = await self.session.execute(_SQL_BY_KEY, {"widget_key": key})
            row = res.first()
        except SQLAlchemyError as e:
            raise StoreError("widget_keys.get_by_key", str(e)) from e
        return _row_to_record(row, with_contractor=True) if row is not None else None

    async def get_for_contractor(self, key_id: uuid.UUID, contractor_id: uuid.UUID) -> Optional[WidgetKeyRecord]:
        try:
            res = await self.session.execute(
                _SQL_BY_ID_FOR_CONTRACTOR, {"key_id": key_id, "contractor_id": contractor_id}
            )
            row = res.first()
        except SQLAlchemyError as e:
            raise StoreError("widget_keys.get_for_contractor", str(e)) from e
        return _row_to_record(row) if row is not None else None

    async def list_for_contractor(self, contractor_id: uuid.UUID) -> List[WidgetKeyRecord]:
        try:
            res = await self.session.execute(_SQL_LIST_FOR_CONTRACTOR, {"contractor_id": contractor_id})
            rows = res.fetchall()
        except SQLAlchemyError as e:
            raise StoreError("widget_keys.list_for_contractor", str(e)) from e
        return [_row_to_record(row) for row in rows]

    async def insert(self, record: WidgetKeyRecord) -> WidgetKeyRecord:
        params = {
            "id": record.id,
            "widget_key": record.key,
            "contractor_id": record.contractor_id,
            "calculator_type": record.calculator_type,
            "domain": record.domain,
            "is_active": record.is_active,
            "rate_limit_per_minute": record.rate_limit_per_minute,
        }
        try:
            res = await self.session.execute(_SQL_INSERT, params)
            row = res.first()
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if _is_unique_violation(e):
                raise KeyCollisionError() from e
            raise StoreError("widget_keys.insert", str(e)) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError("widget_keys.insert", str(e)) from e

        created_at = ensure_aware(row.created_at) if row is not None and row.created_at else None
        return WidgetKeyRecord(
            id=record.id,
            key=record.key,
            contractor_id=record.contractor_id,
            calculator_type=record.calculator_type,
            domain=record.domain,
            is_active=record.is_active,
            rate_limit_per_minute=record.rate_limit_per_minute,
            usage_count=0,
            created_at=created_at,
        )

    async def record_use(self, key_id: uuid.UUID, used_at: datetime) -> None:
        try:
            await self.session.execute(_SQL_RECORD_USE, {"key_id": key_id, "used_at": used_at})
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError("widget_keys.record_use", str(e)) from e

    async def update_settings(
        self, key_id: uuid.UUID, contractor_id: uuid.UUID, update: KeySettingsUpdate
    ) -> Optional[WidgetKeyRecord]:
        params = {
            "key_id": key_id,
            "contractor_id": contractor_id,
            "is_active": update.is_active,
            "rate_limit_per_minute": update.rate_limit_per_minute,
            "domain": update.domain,
            "clear_domain": update.clear_domain,
        }
        try:
            res = await self.session.execute(_SQL_UPDATE_SETTINGS, params)
            row = res.first()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError("widget_keys.update_settings", str(e)) from e
        return _row_to_record(row) if row is not None else None
