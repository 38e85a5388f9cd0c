"""
Shared route dependencies: service lookups on ``app.state`` and the
mapping from service errors to HTTP responses.
"""

from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException, Request

from ..core.errors import log_exception
from ..services.data_access import DataAccess, DataAccessError, RecordNotFound
from ..services.dispatch import (
    AmbulanceNotFound,
    DispatchError,
    DispatchService,
    DispatchValidationError,
    EmergencyNotFound,
    InvalidTransition,
)

logger = logging.getLogger("api")


def get_data(request: Request) -> DataAccess:
    return request.app.state.data_access


def get_dispatch(request: Request) -> DispatchService:
    return request.app.state.dispatch


def raise_http(exc: Exception, *, action: str) -> NoReturn:
    if isinstance(exc, (DispatchValidationError, ValueError)):
        logger.warning("%s rejected: %s", action, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, (EmergencyNotFound, AmbulanceNotFound, RecordNotFound)):
        logger.warning("%s: %s", action, exc)
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, InvalidTransition):
        logger.warning("%s rejected: %s", action, exc)
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (DispatchError, DataAccessError)):
        log_exception(logger, f"{action} failed", exc=exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    raise exc
