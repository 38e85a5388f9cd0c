"""
Entry point for the ambulance dispatch backend.

This module creates the FastAPI application, wires the change feed,
data-access facade and dispatch workflow onto ``app.state`` and includes
all API routers. Run with:

    uvicorn ambudispatch.main:app --reload

"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import FastAPI

from .api import api_router
from .api.v1.realtime import ConnectionManager, WebSocketAlertSink
from .core.config import env_flag, get_app_env
from .core.db import SessionLocal, engine
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .models import Base
from .services.change_feed import ChangeFeed
from .services.data_access import DataAccess
from .services.dispatch import DispatchService
from .services.mqtt_bridge import IntakeConsumer, MQTTChangePublisher
from .services.realtime import DashboardView, EmergencyAlertNotifier, LogAlertSink
from .services.seed import DEFAULT_HOSPITALS_PATH, seed_admin_user, seed_hospitals


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Ambulance Dispatch Backend", version="0.1.0")
    app.include_router(api_router)

    feed = ChangeFeed()
    data = DataAccess(SessionLocal, feed)
    ws_manager = ConnectionManager(feed)
    app.state.change_feed = feed
    app.state.data_access = data
    app.state.dispatch = DispatchService(data)
    app.state.ws_manager = ws_manager
    app.state.alert_notifier = EmergencyAlertNotifier(feed, [LogAlertSink(), WebSocketAlertSink(ws_manager)])
    app.state.dashboard = None
    app.state.mqtt_bridge = None
    app.state.intake_consumer = None

    @app.on_event("startup")
    def _startup() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if env_flag("AUTO_CREATE_DB"):
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if env_flag("AUTO_SEED_ADMIN_USER"):
            try:
                with SessionLocal() as db:
                    seed_admin_user(db)
            except Exception as exc:
                log_exception(logger, "Seed admin user failed", exc=exc)
                if env == "prod":
                    raise
        if env_flag("AUTO_SEED_HOSPITALS"):
            seed_path = Path(os.getenv("SEED_HOSPITALS_PATH", "") or DEFAULT_HOSPITALS_PATH)
            try:
                with SessionLocal() as db:
                    inserted = seed_hospitals(db, seed_path)
                if inserted:
                    logger.info("Seeded %s hospitals from %s", inserted, seed_path)
            except Exception as exc:
                log_exception(logger, "Seed hospitals failed", extra={"path": str(seed_path)}, exc=exc)
                if env == "prod":
                    raise

        feed.attach(SessionLocal)
        ws_manager.start()
        app.state.alert_notifier.start()
        try:
            app.state.dashboard = DashboardView(data, feed).open()
        except Exception as exc:
            log_exception(logger, "Dashboard live view failed to load", exc=exc)

        if env_flag("ENABLE_MQTT_BRIDGE"):
            bridge = MQTTChangePublisher(feed)
            bridge.start()
            app.state.mqtt_bridge = bridge
        if env_flag("ENABLE_INTAKE_CONSUMER"):
            consumer = IntakeConsumer(data)
            consumer.start()
            app.state.intake_consumer = consumer

    @app.on_event("shutdown")
    def _shutdown() -> None:
        for name in ("intake_consumer", "mqtt_bridge"):
            component = getattr(app.state, name, None)
            if component:
                component.stop()
        dashboard = getattr(app.state, "dashboard", None)
        if dashboard:
            dashboard.close()
        app.state.alert_notifier.stop()
        ws_manager.stop()
        feed.detach(SessionLocal)

    return app


app = create_app()
