"""
API endpoints for the ambulance fleet.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ...core.auth import DISPATCH_ROLES, UserContext, require_roles
from ...schemas.ambulance import (
    AmbulanceCreate,
    AmbulanceLocationIn,
    AmbulanceOut,
    AmbulanceStatusIn,
    AmbulanceUpdate,
)
from ...services.data_access import DataAccess, DataAccessError
from ...services.dispatch import DispatchError, DispatchService
from ..deps import get_data, get_dispatch, raise_http


router = APIRouter(prefix="/api/v1/ambulances", tags=["ambulances"])


@router.get("", response_model=list[AmbulanceOut])
def list_ambulances(
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    data: DataAccess = Depends(get_data),
) -> list[AmbulanceOut]:
    try:
        return data.list_ambulances(status=status, search=search)
    except DataAccessError as exc:
        raise_http(exc, action="List ambulances")


@router.get("/available", response_model=list[AmbulanceOut])
def available_ambulances(dispatch: DispatchService = Depends(get_dispatch)) -> list[AmbulanceOut]:
    try:
        return dispatch.fetch_available_ambulances()
    except DispatchError as exc:
        raise_http(exc, action="Fetch available ambulances")


@router.get("/{ambulance_id}", response_model=dict)
def get_ambulance(
    ambulance_id: str,
    data: DataAccess = Depends(get_data),
    dispatch: DispatchService = Depends(get_dispatch),
) -> dict:
    try:
        ambulance = data.get_ambulance(ambulance_id)
        active = dispatch.active_emergency_for_ambulance(ambulance_id) if ambulance else None
    except (DataAccessError, DispatchError) as exc:
        raise_http(exc, action="Get ambulance")
    if ambulance is None:
        raise HTTPException(status_code=404, detail="Ambulance not found")
    return {
        **ambulance.model_dump(mode="json"),
        "active_emergency": active.model_dump(mode="json") if active else None,
    }


@router.post("", response_model=AmbulanceOut, status_code=201)
def create_ambulance(
    payload: AmbulanceCreate,
    data: DataAccess = Depends(get_data),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> AmbulanceOut:
    try:
        return data.create_ambulance(payload.model_dump())
    except DataAccessError as exc:
        raise_http(exc, action="Create ambulance")


@router.patch("/{ambulance_id}", response_model=AmbulanceOut)
def update_ambulance(
    ambulance_id: str,
    payload: AmbulanceUpdate,
    data: DataAccess = Depends(get_data),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> AmbulanceOut:
    try:
        return data.update_ambulance(ambulance_id, payload.model_dump(exclude_unset=True))
    except (DataAccessError, ValueError) as exc:
        raise_http(exc, action="Update ambulance")


@router.patch("/{ambulance_id}/status", response_model=AmbulanceOut)
def set_ambulance_status(
    ambulance_id: str,
    payload: AmbulanceStatusIn,
    data: DataAccess = Depends(get_data),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> AmbulanceOut:
    # Manual correction path for an ambulance left out of step by a partial dispatch.
    try:
        return data.update_ambulance(ambulance_id, {"status": payload.status})
    except DataAccessError as exc:
        raise_http(exc, action="Set ambulance status")


@router.put("/{ambulance_id}/location", response_model=AmbulanceOut)
def report_location(
    ambulance_id: str,
    payload: AmbulanceLocationIn,
    data: DataAccess = Depends(get_data),
) -> AmbulanceOut:
    fields = {
        "last_latitude": payload.latitude,
        "last_longitude": payload.longitude,
        "last_updated": payload.timestamp or datetime.now(timezone.utc),
    }
    try:
        return data.update_ambulance(ambulance_id, fields)
    except DataAccessError as exc:
        raise_http(exc, action="Report ambulance location")


@router.delete("/{ambulance_id}", status_code=204)
def delete_ambulance(
    ambulance_id: str,
    data: DataAccess = Depends(get_data),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> Response:
    try:
        data.delete_ambulance(ambulance_id)
    except DataAccessError as exc:
        raise_http(exc, action="Delete ambulance")
    return Response(status_code=204)
