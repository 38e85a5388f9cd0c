"""Helpers shared by the schema modules."""

from __future__ import annotations

import datetime
from typing import Any


def field(row: Any, name: str, default: Any = None) -> Any:
    """Read a column from an ORM row or a change-event record dict."""
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def ensure_utc(value: Any) -> Any:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if isinstance(value, str):
        try:
            value = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, datetime.datetime) and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value
