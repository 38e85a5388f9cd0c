"""
Pydantic schemas for patients.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PatientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=64)
    address: Optional[str] = None
    medical_notes: Optional[str] = None
    emergency_contact: Optional[str] = None


class PatientUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    medical_notes: Optional[str] = None
    emergency_contact: Optional[str] = None


class PatientOut(BaseModel):
    id: str
    name: str
    phone: str
    address: Optional[str] = None
    medical_notes: Optional[str] = None
    emergency_contact: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
