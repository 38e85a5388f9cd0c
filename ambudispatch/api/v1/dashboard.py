"""
Dashboard summary served from the live collections kept on ``app.state``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ...services.dispatch import DispatchError, DispatchService
from ..deps import get_dispatch, raise_http

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("/summary")
def dashboard_summary(request: Request) -> dict:
    view = getattr(request.app.state, "dashboard", None)
    if view is None:
        raise HTTPException(status_code=503, detail="Dashboard is not ready")
    return view.summary()


@router.get("/mismatches")
def dispatch_mismatches(dispatch: DispatchService = Depends(get_dispatch)) -> dict:
    try:
        items = dispatch.find_mismatches()
    except DispatchError as exc:
        raise_http(exc, action="Dispatch mismatch scan")
    return {"items": items, "total": len(items)}
