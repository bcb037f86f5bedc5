"""
Subscription Status Provider.

The widget gate reads exactly one source for "is this contractor paying":
the ``subscriptions`` table keyed by contractor. Billing code owns the rows;
this module only reads them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, Callable, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from widgetgate.core.clock import ensure_aware
from widgetgate.core.config import settings

ACTIVE = "active"
NOT_STARTED = "not_started"


class SubscriptionLookupError(Exception):
    """The provider could not answer. Callers must treat this as a denial."""


@dataclass(frozen=True)
class SubscriptionStatus:
    contractor_id: uuid.UUID
    status: str = NOT_STARTED
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    def is_active(self, now: datetime) -> bool:
        if self.status != ACTIVE or self.current_period_end is None:
            return False
        return ensure_aware(self.current_period_end) > now


class SubscriptionStatusProvider(Protocol):
    async def get_status(self, contractor_id: uuid.UUID) -> SubscriptionStatus: ...


_SQL_STATUS = text(
    """
    SELECT status, current_period_end, cancel_at_period_end
    FROM subscriptions
    WHERE contractor_id = :contractor_id
    LIMIT 1
"""
)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class SqlSubscriptionStatusProvider:
    """
    Reads status on a session of its own, never the request session: a lookup
    cancelled on timeout leaves its connection unusable. ``statement_timeout``
    bounds the query server-side as well.
    """

    def __init__(self, session_factory: SessionFactory, timeout_seconds: Optional[float] = None) -> None:
        self.session_factory = session_factory
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.subscription_lookup_timeout_seconds
        )

    async def get_status(self, contractor_id: uuid.UUID) -> SubscriptionStatus:
        timeout_ms = max(1, int(self.timeout_seconds * 1000))
        try:
            async with self.session_factory() as session:
                await session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
                res = await session.execute(_SQL_STATUS, {"contractor_id": contractor_id})
                row = res.first()
        except SQLAlchemyError as e:
            raise SubscriptionLookupError(str(e)) from e

        # No row means the contractor never subscribed.
        if row is None:
            return SubscriptionStatus(contractor_id=contractor_id)

        return SubscriptionStatus(
            contractor_id=contractor_id,
            status=row.status,
            current_period_end=row.current_period_end,
            cancel_at_period_end=bool(row.cancel_at_period_end),
        )
