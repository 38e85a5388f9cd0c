"""
API endpoints for patient records.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ...schemas.patient import PatientCreate, PatientOut, PatientUpdate
from ...services.data_access import DataAccess, DataAccessError
from ..deps import get_data, raise_http


router = APIRouter(prefix="/api/v1/patients", tags=["patients"])


@router.get("", response_model=list[PatientOut])
def list_patients(search: Optional[str] = Query(None), data: DataAccess = Depends(get_data)) -> list[PatientOut]:
    try:
        return data.list_patients(search=search)
    except DataAccessError as exc:
        raise_http(exc, action="List patients")


@router.get("/{patient_id}", response_model=PatientOut)
def get_patient(patient_id: str, data: DataAccess = Depends(get_data)) -> PatientOut:
    try:
        patient = data.get_patient(patient_id)
    except DataAccessError as exc:
        raise_http(exc, action="Get patient")
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


@router.post("", response_model=PatientOut, status_code=201)
def create_patient(payload: PatientCreate, data: DataAccess = Depends(get_data)) -> PatientOut:
    try:
        return data.create_patient(payload.model_dump())
    except DataAccessError as exc:
        raise_http(exc, action="Create patient")


@router.patch("/{patient_id}", response_model=PatientOut)
def update_patient(patient_id: str, payload: PatientUpdate, data: DataAccess = Depends(get_data)) -> PatientOut:
    try:
        return data.update_patient(patient_id, payload.model_dump(exclude_unset=True))
    except (DataAccessError, ValueError) as exc:
        raise_http(exc, action="Update patient")


@router.delete("/{patient_id}", status_code=204)
def delete_patient(patient_id: str, data: DataAccess = Depends(get_data)) -> Response:
    try:
        data.delete_patient(patient_id)
    except DataAccessError as exc:
        raise_http(exc, action="Delete patient")
    return Response(status_code=204)
