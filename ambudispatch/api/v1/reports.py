"""
API endpoints for incident reports.

The list view is enriched with the linked emergency request and ambulance
so the reports table can show names without extra lookups.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ...schemas.report import ReportCreate, ReportOut, ReportUpdate
from ...services.data_access import DataAccess, DataAccessError
from ..deps import get_data, raise_http


router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


@router.get("", response_model=list[ReportOut])
def list_reports(search: Optional[str] = Query(None), data: DataAccess = Depends(get_data)) -> list[ReportOut]:
    try:
        return data.list_reports(search=search)
    except DataAccessError as exc:
        raise_http(exc, action="List reports")


@router.get("/{report_id}", response_model=ReportOut)
def get_report(report_id: str, data: DataAccess = Depends(get_data)) -> ReportOut:
    try:
        report = data.get_report(report_id)
    except DataAccessError as exc:
        raise_http(exc, action="Get report")
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


@router.post("", response_model=ReportOut, status_code=201)
def create_report(payload: ReportCreate, data: DataAccess = Depends(get_data)) -> ReportOut:
    try:
        return data.create_report(payload.model_dump())
    except DataAccessError as exc:
        raise_http(exc, action="Create report")


@router.patch("/{report_id}", response_model=ReportOut)
def update_report(report_id: str, payload: ReportUpdate, data: DataAccess = Depends(get_data)) -> ReportOut:
    try:
        return data.update_report(report_id, payload.model_dump(exclude_unset=True))
    except (DataAccessError, ValueError) as exc:
        raise_http(exc, action="Update report")


@router.delete("/{report_id}", status_code=204)
def delete_report(report_id: str, data: DataAccess = Depends(get_data)) -> Response:
    try:
        data.delete_report(report_id)
    except DataAccessError as exc:
        raise_http(exc, action="Delete report")
    return Response(status_code=204)
