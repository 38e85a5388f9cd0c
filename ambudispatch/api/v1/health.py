"""
Health endpoint: database reachability and MQTT bridge state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.db import get_db


router = APIRouter(prefix="/api/v1/health", tags=["health"])


def _mqtt_status(component) -> dict:
    if component is None:
        return {"enabled": False, "connected": False}
    return {"enabled": True, "connected": component.is_connected()}


@router.get("")
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    database_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logging.getLogger("health").warning("Database check failed: %s", exc)
        database_ok = False
    feed = getattr(request.app.state, "change_feed", None)
    return {
        "status": "ok" if database_ok else "degraded",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "database": {"ok": database_ok},
        "change_feed": {"subscribers": feed.channel_count() if feed else 0},
        "mqtt": {
            "host": settings.mqtt_broker_host,
            "port": settings.mqtt_broker_port,
            "bridge": _mqtt_status(getattr(request.app.state, "mqtt_bridge", None)),
            "intake": _mqtt_status(getattr(request.app.state, "intake_consumer", None)),
        },
    }
