"""
WebSocket fan-out of change events and emergency alerts.

Change-feed callbacks run on whichever thread committed, so messages are
handed to the event loop with ``asyncio.run_coroutine_threadsafe``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from ...core.auth import user_from_token
from ...services.change_feed import WATCHED_TABLES, ChangeEvent, ChangeFeed, Channel
from ...services.realtime import EmergencyAlert

router = APIRouter(prefix="/api/v1/realtime", tags=["realtime"])


class ConnectionManager:
    def __init__(self, feed: ChangeFeed) -> None:
        self.logger = logging.getLogger("ConnectionManager")
        self.feed = feed
        self.active: Dict[WebSocket, set[str]] = {}
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._channel: Optional[Channel] = None

    def start(self) -> None:
        if self._channel is None:
            self._channel = self.feed.channel("websocket").on("*", "*", self.on_change).subscribe()

    def stop(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None

    async def connect(self, websocket: WebSocket, tables: set[str]) -> None:
        await websocket.accept()
        self.loop = asyncio.get_running_loop()
        self.active[websocket] = tables
        self.logger.info("Client %s connected tables=%s total=%s", id(websocket), sorted(tables), len(self.active))

    def disconnect(self, websocket: WebSocket) -> None:
        if self.active.pop(websocket, None) is not None:
            self.logger.info("Client %s disconnected total=%s", id(websocket), len(self.active))

    async def broadcast(self, message: Dict[str, Any], table: Optional[str] = None) -> None:
        data = json.dumps(message, default=str)
        for ws, tables in list(self.active.items()):
            if table is not None and table not in tables:
                continue
            try:
                await ws.send_text(data)
            except Exception as exc:
                self.logger.warning("Removed client %s due to error: %s", id(ws), exc)
                self.disconnect(ws)

    def broadcast_threadsafe(self, message: Dict[str, Any], table: Optional[str] = None) -> None:
        if self.loop is None or self.loop.is_closed() or not self.active:
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(message, table), self.loop)

    def on_change(self, change: ChangeEvent) -> None:
        self.broadcast_threadsafe({"type": "change", **change.to_dict()}, table=change.table)


class WebSocketAlertSink:
    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    def send(self, alert: EmergencyAlert) -> None:
        self.manager.broadcast_threadsafe({"type": "emergency_alert", "alert": alert.to_dict()})


def _parse_tables(raw: Optional[str]) -> set[str]:
    if not raw:
        return set(WATCHED_TABLES)
    tables = {t.strip() for t in raw.split(",") if t.strip()}
    unknown = tables - set(WATCHED_TABLES)
    if unknown:
        raise ValueError(f"Unknown tables: {', '.join(sorted(unknown))}")
    return tables


@router.websocket("/ws")
async def realtime_ws(
    websocket: WebSocket,
    tables: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
) -> None:
    manager: ConnectionManager = websocket.app.state.ws_manager
    try:
        user_from_token(token)
        requested = _parse_tables(tables)
    except (HTTPException, ValueError) as exc:
        manager.logger.warning("Rejected websocket: %s", getattr(exc, "detail", exc))
        await websocket.close(code=1008)
        return
    await manager.connect(websocket, requested)
    try:
        await websocket.send_json(
            {
                "type": "subscribed",
                "tables": sorted(requested),
                "last_seq": {t: manager.feed.last_seq(t) for t in sorted(requested)},
            }
        )
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(websocket)
