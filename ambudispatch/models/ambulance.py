"""
ORM model for ambulances.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, new_id, utcnow

AMBULANCE_STATUSES = ("available", "dispatched", "maintenance")


class Ambulance(Base):
    __tablename__ = "ambulances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    vehicle_number: Mapped[str] = mapped_column(String(64))
    driver_name: Mapped[str] = mapped_column(String(255))
    driver_phone: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default="available", index=True)
    last_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
