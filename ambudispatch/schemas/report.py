"""
Pydantic schemas for reports.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .ambulance import AmbulanceOut
from .emergency import EmergencyRequestOut


class ReportCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    emergency_id: Optional[str] = None
    ambulance_id: Optional[str] = None
    report_date: Optional[date] = None


class ReportUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    emergency_id: Optional[str] = None
    ambulance_id: Optional[str] = None
    report_date: Optional[date] = None


class ReportOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    emergency_id: Optional[str] = None
    ambulance_id: Optional[str] = None
    report_date: date
    created_at: Optional[datetime] = None
    emergency: Optional[EmergencyRequestOut] = None
    ambulance: Optional[AmbulanceOut] = None

    model_config = ConfigDict(from_attributes=True)
