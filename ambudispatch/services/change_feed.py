"""
Change-notification feed for watched tables.

The feed hooks into a SQLAlchemy session factory: row inserts, updates and
deletes are collected when a session flushes and published only once the
transaction commits (a rollback discards them). Subscribers register
through channels, one filter per (table, event) pair, in the same way the
dashboard pages subscribe to a table while they are open.

Every published event carries a per-table sequence number so consumers
can apply deltas and notice when they missed one.
"""

from __future__ import annotations

import datetime
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import event as sa_event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from ..core.errors import log_exception

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")
WATCHED_TABLES = ("emergency_requests", "ambulances", "patients", "reports")

ChangeCallback = Callable[["ChangeEvent"], None]


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value


def row_to_record(obj: Any) -> dict:
    """Snapshot the loaded column values of an ORM instance without triggering loads."""
    state = sa_inspect(obj)
    return {attr.key: _jsonable(state.dict.get(attr.key)) for attr in state.mapper.column_attrs}


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    record: dict
    seq: int
    commit_time: datetime.datetime

    @property
    def record_id(self) -> Optional[str]:
        value = self.record.get("id")
        return str(value) if value is not None else None

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "event_type": self.event_type,
            "record": self.record,
            "seq": self.seq,
            "commit_time": self.commit_time.isoformat(),
        }


@dataclass
class _Binding:
    table: str
    event: str
    callback: ChangeCallback

    def matches(self, change: ChangeEvent) -> bool:
        if self.table != "*" and self.table != change.table:
            return False
        return self.event == "*" or self.event == change.event_type


@dataclass(eq=False)
class Channel:
    """A named group of subscriptions whose lifetime is managed together."""

    feed: "ChangeFeed"
    name: str
    bindings: list[_Binding] = field(default_factory=list)
    active: bool = False

    def on(self, table: str, event: str, callback: ChangeCallback) -> "Channel":
        event = event.upper()
        if event != "*" and event not in EVENT_TYPES:
            raise ValueError(f"Unsupported event type {event!r}")
        self.bindings.append(_Binding(table=table, event=event, callback=callback))
        return self

    def subscribe(self) -> "Channel":
        self.feed.add_channel(self)
        return self

    def unsubscribe(self) -> None:
        self.feed.remove_channel(self)

    def deliver(self, change: ChangeEvent, logger: logging.Logger) -> None:
        for binding in list(self.bindings):
            if not binding.matches(change):
                continue
            try:
                binding.callback(change)
            except Exception as exc:
                log_exception(
                    logger,
                    "Change subscriber failed",
                    extra={"channel": self.name, "table": change.table, "seq": change.seq},
                    exc=exc,
                )

    def __enter__(self) -> "Channel":
        if not self.active:
            self.subscribe()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class ChangeFeed:
    """In-process publish/subscribe hub for committed row changes."""

    def __init__(self, tables: Iterable[str] | None = WATCHED_TABLES) -> None:
        self.logger = logging.getLogger("ChangeFeed")
        self.tables = set(tables) if tables is not None else None
        self._lock = threading.RLock()
        self._channels: list[Channel] = []
        self._seq: dict[str, int] = {}
        self._names = itertools.count(1)
        self._pending_key = f"change_feed_pending_{id(self)}"

    # Subscriptions

    def channel(self, name: str | None = None) -> Channel:
        return Channel(feed=self, name=name or f"channel-{next(self._names)}")

    def add_channel(self, channel: Channel) -> None:
        with self._lock:
            if channel not in self._channels:
                self._channels.append(channel)
            channel.active = True

    def remove_channel(self, channel: Channel) -> None:
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)
            channel.active = False

    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def last_seq(self, table: str) -> int:
        with self._lock:
            return self._seq.get(table, 0)

    # Publishing

    def publish(self, table: str, event_type: str, record: dict) -> ChangeEvent:
        # Delivery happens under the lock so subscribers see events in sequence order.
        with self._lock:
            seq = self._seq.get(table, 0) + 1
            self._seq[table] = seq
            change = ChangeEvent(
                table=table,
                event_type=event_type,
                record=record,
                seq=seq,
                commit_time=datetime.datetime.now(datetime.timezone.utc),
            )
            for channel in list(self._channels):
                channel.deliver(change, self.logger)
        self.logger.debug("Published %s %s seq=%s id=%s", table, event_type, seq, change.record_id)
        return change

    # SQLAlchemy integration

    def attach(self, session_factory) -> None:
        sa_event.listen(session_factory, "after_flush", self._after_flush)
        sa_event.listen(session_factory, "after_commit", self._after_commit)
        sa_event.listen(session_factory, "after_rollback", self._after_rollback)

    def detach(self, session_factory) -> None:
        for name, fn in (
            ("after_flush", self._after_flush),
            ("after_commit", self._after_commit),
            ("after_rollback", self._after_rollback),
        ):
            if sa_event.contains(session_factory, name, fn):
                sa_event.remove(session_factory, name, fn)

    def _watched(self, obj: Any) -> Optional[str]:
        table = getattr(obj, "__tablename__", None)
        if table is None:
            return None
        if self.tables is not None and table not in self.tables:
            return None
        return table

    def _after_flush(self, session: Session, flush_context) -> None:
        pending = session.info.setdefault(self._pending_key, [])
        for obj in session.new:
            table = self._watched(obj)
            if table:
                pending.append((table, "INSERT", row_to_record(obj)))
        for obj in session.dirty:
            table = self._watched(obj)
            if table and session.is_modified(obj, include_collections=False):
                pending.append((table, "UPDATE", row_to_record(obj)))
        for obj in session.deleted:
            table = self._watched(obj)
            if table:
                pending.append((table, "DELETE", row_to_record(obj)))

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(self._pending_key, None) or []
        for table, event_type, record in pending:
            self.publish(table, event_type, record)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(self._pending_key, None)
