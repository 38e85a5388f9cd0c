"""
API endpoints for the hospital directory and nearest-hospital lookup.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.auth import UserContext, require_roles
from ...schemas.hospital import HospitalCreate, HospitalOut, NearestHospitalOut
from ...services.data_access import DataAccess, DataAccessError
from ...services.navigation import nearest_hospitals
from ..deps import get_data, raise_http


router = APIRouter(prefix="/api/v1/hospitals", tags=["hospitals"])


@router.get("", response_model=list[HospitalOut])
def list_hospitals(search: Optional[str] = Query(None), data: DataAccess = Depends(get_data)) -> list[HospitalOut]:
    try:
        hospitals = data.list_hospitals()
    except DataAccessError as exc:
        raise_http(exc, action="List hospitals")
    needle = (search or "").strip().lower()
    if needle:
        hospitals = [h for h in hospitals if needle in h.name.lower() or needle in h.address.lower()]
    return hospitals


@router.get("/nearest", response_model=list[NearestHospitalOut])
def nearest(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    limit: Optional[int] = Query(None, ge=1),
    data: DataAccess = Depends(get_data),
) -> list[NearestHospitalOut]:
    try:
        hospitals = data.list_hospitals()
    except DataAccessError as exc:
        raise_http(exc, action="Nearest hospitals")
    return nearest_hospitals(hospitals, latitude, longitude, limit=limit)


@router.post("", response_model=HospitalOut, status_code=201)
def create_hospital(
    payload: HospitalCreate,
    data: DataAccess = Depends(get_data),
    user: UserContext = Depends(require_roles("ADMIN")),
) -> HospitalOut:
    try:
        return data.create_hospital(payload.model_dump())
    except DataAccessError as exc:
        raise_http(exc, action="Create hospital")
