from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from widgetgate.db.base import Base, CreatedAtMixin, UUIDMixin


class WidgetUsageLog(UUIDMixin, CreatedAtMixin, Base):
    """Append-only record of every validation attempt and lead capture."""

    __tablename__ = "widget_usage_logs"
    __table_args__ = (
        # Rolling rate-limit window lookups
        Index("idx_widget_usage_logs_key_created", "widget_key_id", "created_at"),
        Index("idx_widget_usage_logs_contractor_created", "contractor_id", "created_at"),
    )

    # Null when the presented key could not be resolved.
    widget_key_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("widget_keys.id", ondelete="SET NULL"),
        nullable=True,
    )
    contractor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    calculator_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    validation_result: Mapped[str] = mapped_column(String(64), nullable=False)
    visitor_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    referer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
