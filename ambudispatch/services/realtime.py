"""
Real-time reaction layer.

``LiveCollection`` keeps a local copy of one table in step with the change
feed, ``EmergencyAlertNotifier`` raises an alert for every new emergency
request and ``DashboardView`` combines both for the dashboard summary.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Protocol

from ..core.config import settings
from ..core.errors import log_exception
from ..schemas.ambulance import AmbulanceOut
from ..schemas.emergency import EmergencyRequestOut
from .change_feed import ChangeEvent, ChangeFeed, Channel
from .data_access import DataAccess


class LiveCollection:
    """
    A local, re-fetchable copy of one table keyed by record id.

    Deltas are applied in place while sequence numbers are contiguous. A gap
    means an event was missed, so the whole collection is fetched again.
    Events at or below the current sequence are already reflected and are
    ignored, which makes duplicate delivery harmless.
    """

    def __init__(
        self,
        table: str,
        fetch: Callable[[], Iterable[Any]],
        feed: Optional[ChangeFeed] = None,
        *,
        convert: Callable[[dict], Any] = dict,
        sort_key: Optional[Callable[[Any], Any]] = None,
        reverse: bool = False,
        on_change: Optional[Callable[["LiveCollection", ChangeEvent], None]] = None,
    ) -> None:
        self.logger = logging.getLogger(f"LiveCollection.{table}")
        self.table = table
        self.fetch = fetch
        self.feed = feed
        self.convert = convert
        self.sort_key = sort_key
        self.reverse = reverse
        self.on_change = on_change
        self.version = 0
        self.last_seq = 0
        self.refetch_count = 0
        self._rows: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._channel: Optional[Channel] = None

    # Lifetime

    def open(self) -> "LiveCollection":
        if self.feed is not None and self._channel is None:
            self._channel = self.feed.channel(f"live-{self.table}").on(self.table, "*", self.apply).subscribe()
        base = self.feed.last_seq(self.table) if self.feed is not None else 0
        with self._lock:
            self._reload(base)
        return self

    def close(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None

    def __enter__(self) -> "LiveCollection":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Reads

    def items(self) -> list[Any]:
        with self._lock:
            rows = list(self._rows.values())
        if self.sort_key is not None:
            rows.sort(key=self.sort_key, reverse=self.reverse)
        return rows

    def get(self, record_id: str) -> Optional[Any]:
        with self._lock:
            return self._rows.get(record_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    # Updates

    def _reload(self, seq: int) -> None:
        rows = {str(_key(row)): row for row in self.fetch()}
        with self._lock:
            self._rows = rows
            self.last_seq = seq
            self.version += 1

    def apply(self, change: ChangeEvent) -> None:
        if change.table != self.table:
            return
        with self._lock:
            if change.seq <= self.last_seq:
                return
            if change.seq == self.last_seq + 1:
                self._apply_delta(change)
                self.last_seq = change.seq
                self.version += 1
            else:
                self.logger.info(
                    "Sequence gap (have=%s got=%s); re-fetching %s", self.last_seq, change.seq, self.table
                )
                self.refetch_count += 1
                try:
                    self._reload(change.seq)
                except Exception as exc:
                    log_exception(self.logger, "Re-fetch failed", extra={"table": self.table}, exc=exc)
                    return
        if self.on_change is not None:
            self.on_change(self, change)

    def _apply_delta(self, change: ChangeEvent) -> None:
        record_id = change.record_id
        if record_id is None:
            return
        if change.event_type == "DELETE":
            self._rows.pop(record_id, None)
        else:
            self._rows[record_id] = self.convert(change.record)


def _key(row: Any) -> Any:
    if isinstance(row, dict):
        return row.get("id")
    return getattr(row, "id")


@dataclass
class EmergencyAlert:
    emergency_id: str
    name: str
    phone: str
    address: str
    timestamp: Optional[datetime]
    sound_duration_sec: int
    dispatch_action: dict = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: EmergencyRequestOut, sound_duration_sec: int) -> "EmergencyAlert":
        return cls(
            emergency_id=request.id,
            name=request.name,
            phone=request.phone,
            address=request.address,
            timestamp=request.timestamp,
            sound_duration_sec=max(0, sound_duration_sec),
            dispatch_action={"method": "POST", "path": f"/api/v1/emergencies/{request.id}/dispatch"},
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return data


class AlertSink(Protocol):
    def send(self, alert: EmergencyAlert) -> None:
        ...


class LogAlertSink:
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("EmergencyAlert")

    def send(self, alert: EmergencyAlert) -> None:
        self.logger.warning(
            "NEW EMERGENCY id=%s name=%s phone=%s address=%s",
            alert.emergency_id,
            alert.name,
            alert.phone,
            alert.address or "-",
        )


class CallbackAlertSink:
    def __init__(self, callback: Callable[[EmergencyAlert], None]) -> None:
        self.callback = callback

    def send(self, alert: EmergencyAlert) -> None:
        self.callback(alert)


class EmergencyAlertNotifier:
    """Turns INSERTs on emergency_requests into alerts for every sink."""

    def __init__(
        self,
        feed: ChangeFeed,
        sinks: Iterable[AlertSink] = (),
        *,
        sound_duration_sec: Optional[int] = None,
    ) -> None:
        self.logger = logging.getLogger("EmergencyAlertNotifier")
        self.feed = feed
        self.sinks: list[AlertSink] = list(sinks)
        self.sound_duration_sec = (
            settings.alert_sound_duration_sec if sound_duration_sec is None else sound_duration_sec
        )
        self._channel: Optional[Channel] = None

    def add_sink(self, sink: AlertSink) -> None:
        self.sinks.append(sink)

    def remove_sink(self, sink: AlertSink) -> None:
        if sink in self.sinks:
            self.sinks.remove(sink)

    def start(self) -> None:
        if self._channel is None:
            self._channel = self.feed.channel("emergency-alerts").on(
                "emergency_requests", "INSERT", self.handle_insert
            ).subscribe()

    def stop(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None

    def handle_insert(self, change: ChangeEvent) -> None:
        alert = EmergencyAlert.from_request(EmergencyRequestOut.from_row(change.record), self.sound_duration_sec)
        for sink in list(self.sinks):
            try:
                sink.send(alert)
            except Exception as exc:
                log_exception(
                    self.logger,
                    "Alert sink failed",
                    extra={"sink": type(sink).__name__, "emergency_id": alert.emergency_id},
                    exc=exc,
                )


class DashboardView:
    def __init__(self, data: DataAccess, feed: Optional[ChangeFeed] = None) -> None:
        self.requests = LiveCollection(
            "emergency_requests",
            data.list_emergencies,
            feed,
            convert=EmergencyRequestOut.from_row,
            sort_key=lambda r: r.timestamp.timestamp() if r.timestamp else 0.0,
            reverse=True,
        )
        self.ambulances = LiveCollection(
            "ambulances",
            data.list_ambulances,
            feed,
            convert=AmbulanceOut.from_row,
            sort_key=lambda a: a.name,
        )

    def open(self) -> "DashboardView":
        self.requests.open()
        self.ambulances.open()
        return self

    def close(self) -> None:
        self.requests.close()
        self.ambulances.close()

    def __enter__(self) -> "DashboardView":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def summary(self) -> dict:
        requests = self.requests.items()
        ambulances = self.ambulances.items()
        pending = [r for r in requests if r.status == "pending"]
        dispatched = [r for r in requests if r.status == "dispatched"]
        completed = [r for r in requests if r.status == "completed"]
        return {
            "pending_requests": len(pending),
            "in_progress": len(dispatched),
            "completed": len(completed),
            "total_requests": len(requests),
            "ambulances_available": sum(1 for a in ambulances if a.status == "available"),
            "total_ambulances": len(ambulances),
            "active_emergencies": [r.model_dump(mode="json") for r in (pending + dispatched)[:5]],
        }
