from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from widgetgate.db.base import Base, TimestampMixin, UUIDMixin
from widgetgate.services.calculators import ISSUABLE_CALCULATOR_TYPES

_CALCULATOR_LIST = ",".join(f"'{c}'" for c in ISSUABLE_CALCULATOR_TYPES)


class WidgetKey(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "widget_keys"
    __table_args__ = (
        CheckConstraint(f"calculator_type IN ({_CALCULATOR_LIST})", name="calculator_type_valid"),
        CheckConstraint("rate_limit_per_minute > 0", name="rate_limit_positive"),
        CheckConstraint("usage_count >= 0", name="usage_count_non_negative"),
        Index("idx_widget_keys_contractor_created", "contractor_id", "created_at"),
    )

    # Public bearer token; unique, immutable, never reused.
    widget_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    contractor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contractors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    calculator_type: Mapped[str] = mapped_column(String(32), nullable=False)
    domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, server_default="100")

    # Advisory counters, written best-effort on successful validation.
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
