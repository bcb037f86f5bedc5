from __future__ import annotations

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from widgetgate.db.base import Base, TimestampMixin, UUIDMixin


class Contractor(UUIDMixin, TimestampMixin, Base):
    """Owning principal of widget keys and leads (the platform profile row)."""

    __tablename__ = "contractors"

    business_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
