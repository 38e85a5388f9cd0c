"""
API endpoints for emergency requests and the dispatch workflow.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ...core.auth import DISPATCH_ROLES, UserContext, require_roles
from ...core.pagination import page_envelope
from ...schemas.emergency import (
    DispatchIn,
    EmergencyRequestCreate,
    EmergencyRequestOut,
    EmergencyRequestUpdate,
)
from ...services.data_access import DataAccess, DataAccessError
from ...services.dispatch import DispatchError, DispatchService
from ...services.navigation import directions_link, tel_link
from ..deps import get_data, get_dispatch, raise_http


router = APIRouter(prefix="/api/v1/emergencies", tags=["emergencies"])


@router.get("", response_model=dict)
def list_emergencies(
    response: Response,
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort: Literal["timestamp", "name", "phone", "status", "address"] = Query("timestamp"),
    order: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    data: DataAccess = Depends(get_data),
) -> dict:
    try:
        rows = data.list_emergencies(status=status, search=search, sort_key=sort, descending=order == "desc")
    except DataAccessError as exc:
        raise_http(exc, action="List emergencies")
    return page_envelope(
        rows, page=page, page_size=page_size, dump=lambda r: r.model_dump(mode="json"), response=response
    )


@router.get("/{emergency_id}", response_model=EmergencyRequestOut)
def get_emergency(emergency_id: str, data: DataAccess = Depends(get_data)) -> EmergencyRequestOut:
    try:
        emergency = data.get_emergency(emergency_id)
    except DataAccessError as exc:
        raise_http(exc, action="Get emergency")
    if emergency is None:
        raise HTTPException(status_code=404, detail="Emergency request not found")
    return emergency


@router.post("", response_model=EmergencyRequestOut, status_code=201)
def create_emergency(
    payload: EmergencyRequestCreate,
    data: DataAccess = Depends(get_data),
) -> EmergencyRequestOut:
    values = payload.model_dump(exclude_none=True)
    values.setdefault("timestamp", datetime.now(timezone.utc))
    try:
        return data.create_emergency(values)
    except DataAccessError as exc:
        raise_http(exc, action="Create emergency")


@router.patch("/{emergency_id}", response_model=EmergencyRequestOut)
def update_emergency(
    emergency_id: str,
    payload: EmergencyRequestUpdate,
    data: DataAccess = Depends(get_data),
) -> EmergencyRequestOut:
    try:
        return data.update_emergency(emergency_id, payload.model_dump(exclude_unset=True))
    except (DataAccessError, ValueError) as exc:
        raise_http(exc, action="Update emergency")


@router.delete("/{emergency_id}", status_code=204)
def delete_emergency(
    emergency_id: str,
    data: DataAccess = Depends(get_data),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> Response:
    try:
        data.delete_emergency(emergency_id)
    except DataAccessError as exc:
        raise_http(exc, action="Delete emergency")
    return Response(status_code=204)


@router.post("/{emergency_id}/dispatch")
def dispatch_ambulance(
    emergency_id: str,
    payload: DispatchIn,
    dispatch: DispatchService = Depends(get_dispatch),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> dict:
    try:
        dispatch.dispatch_ambulance(emergency_id, payload.ambulance_id)
        emergency = dispatch.data.get_emergency(emergency_id)
    except (DispatchError, DataAccessError) as exc:
        raise_http(exc, action="Dispatch ambulance")
    return {
        "status": "dispatched",
        "message": "Ambulance dispatched successfully",
        "emergency": emergency.model_dump(mode="json") if emergency else None,
    }


@router.post("/{emergency_id}/complete")
def complete_emergency(
    emergency_id: str,
    dispatch: DispatchService = Depends(get_dispatch),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> dict:
    try:
        dispatch.complete_emergency(emergency_id)
    except DispatchError as exc:
        raise_http(exc, action="Complete emergency")
    return {"status": "completed", "message": "Emergency marked as completed"}


@router.post("/{emergency_id}/cancel")
def cancel_emergency(
    emergency_id: str,
    dispatch: DispatchService = Depends(get_dispatch),
    user: UserContext = Depends(require_roles(*DISPATCH_ROLES)),
) -> dict:
    try:
        dispatch.cancel_emergency(emergency_id)
    except DispatchError as exc:
        raise_http(exc, action="Cancel emergency")
    return {"status": "cancelled", "message": "Emergency cancelled"}


@router.get("/{emergency_id}/links")
def emergency_links(emergency_id: str, data: DataAccess = Depends(get_data)) -> dict:
    emergency = get_emergency(emergency_id, data)
    coords = emergency.location.coordinates
    return {
        "call": tel_link(emergency.phone),
        "directions": directions_link(coords.latitude, coords.longitude),
    }
