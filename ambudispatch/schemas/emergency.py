"""
Pydantic schemas for emergency requests.

Requests are stored flat (address, latitude, longitude) but exchanged with
clients in the nested ``location`` shape the dashboard renders.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ._common import ensure_utc, field

RequestStatus = Literal[
    "pending",
    "requested",
    "confirming",
    "dispatched",
    "en_route",
    "arrived",
    "completed",
    "cancelled",
]


class Coordinates(BaseModel):
    latitude: float = 0.0
    longitude: float = 0.0


class Location(BaseModel):
    address: str = ""
    coordinates: Coordinates = Field(default_factory=Coordinates)


def _flatten_location(data: Any) -> Any:
    if not isinstance(data, dict) or "location" not in data:
        return data
    data = dict(data)
    location = data.pop("location") or {}
    coords = location.get("coordinates") or {}
    data.setdefault("address", location.get("address") or "")
    if coords.get("latitude") is not None:
        data.setdefault("latitude", coords.get("latitude"))
    if coords.get("longitude") is not None:
        data.setdefault("longitude", coords.get("longitude"))
    return data


class EmergencyRequestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=64)
    address: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    status: RequestStatus = "pending"
    notes: Optional[str] = None
    ambulance_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def accept_nested_location(cls, data: Any) -> Any:
        return _flatten_location(data)


class EmergencyRequestUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: Optional[RequestStatus] = None
    notes: Optional[str] = None
    ambulance_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_nested_location(cls, data: Any) -> Any:
        return _flatten_location(data)


class EmergencyRequestOut(BaseModel):
    id: str
    name: str
    phone: str
    timestamp: Optional[datetime] = None
    location: Location
    status: str
    notes: Optional[str] = None
    ambulance_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def address(self) -> str:
        return self.location.address

    @classmethod
    def from_row(cls, row: Any) -> "EmergencyRequestOut":
        return cls(
            id=field(row, "id"),
            name=field(row, "name") or "",
            phone=field(row, "phone") or "",
            timestamp=ensure_utc(field(row, "timestamp")),
            location=Location(
                address=field(row, "address") or "",
                coordinates=Coordinates(
                    latitude=field(row, "latitude") or 0.0,
                    longitude=field(row, "longitude") or 0.0,
                ),
            ),
            status=field(row, "status") or "pending",
            notes=field(row, "notes"),
            ambulance_id=field(row, "ambulance_id"),
            updated_at=ensure_utc(field(row, "updated_at")),
        )


class DispatchIn(BaseModel):
    ambulance_id: Optional[str] = None
