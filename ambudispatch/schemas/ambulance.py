"""
Pydantic schemas for ambulances.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from ._common import ensure_utc, field

AmbulanceStatus = Literal["available", "dispatched", "maintenance"]


class Driver(BaseModel):
    name: str
    phone: str


class LastLocation(BaseModel):
    latitude: float
    longitude: float
    timestamp: Optional[datetime] = None


class AmbulanceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    vehicle_number: str = Field(..., min_length=1, max_length=64)
    driver_name: str = Field(..., min_length=1, max_length=255)
    driver_phone: str = Field(..., min_length=1, max_length=64)
    status: AmbulanceStatus = "available"


class AmbulanceUpdate(BaseModel):
    name: Optional[str] = None
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    status: Optional[AmbulanceStatus] = None


class AmbulanceStatusIn(BaseModel):
    status: AmbulanceStatus


class AmbulanceLocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None


class AmbulanceOut(BaseModel):
    id: str
    name: str
    vehicle_number: str
    driver: Driver
    status: str
    last_location: Optional[LastLocation] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "AmbulanceOut":
        lat = field(row, "last_latitude")
        lon = field(row, "last_longitude")
        last_location = None
        if lat is not None and lon is not None:
            last_location = LastLocation(
                latitude=float(lat),
                longitude=float(lon),
                timestamp=ensure_utc(field(row, "last_updated") or field(row, "updated_at")),
            )
        return cls(
            id=field(row, "id"),
            name=field(row, "name") or "",
            vehicle_number=field(row, "vehicle_number") or "",
            driver=Driver(name=field(row, "driver_name") or "", phone=field(row, "driver_phone") or ""),
            status=field(row, "status") or "available",
            last_location=last_location,
            updated_at=ensure_utc(field(row, "updated_at")),
        )
