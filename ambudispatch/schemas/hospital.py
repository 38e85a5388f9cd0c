"""
Pydantic schemas for hospitals and the nearest-hospital lookup.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class HospitalCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: str = ""
    phone: str = ""
    email: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class HospitalOut(BaseModel):
    id: str
    name: str
    address: str
    phone: str
    email: Optional[str] = None
    latitude: float
    longitude: float

    model_config = ConfigDict(from_attributes=True)


class NearestHospitalOut(HospitalOut):
    distance_km: float
    phone_link: Optional[str] = None
    directions_link: str
