"""
ORM model for incident reports.

References to the emergency request and ambulance are optional and not
enforced by the store.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, new_id, utcnow


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    ambulance_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    report_date: Mapped[date] = mapped_column(Date, default=lambda: utcnow().date(), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
