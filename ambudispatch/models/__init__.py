"""
SQLAlchemy model base class for the ambulance dispatch backend.

This package defines ORM models for emergency requests, ambulances,
patients, reports, hospitals and operator accounts. All models should
inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


from .emergency_request import EmergencyRequest  # noqa: E402,F401
from .ambulance import Ambulance  # noqa: E402,F401
from .patient import Patient  # noqa: E402,F401
from .report import Report  # noqa: E402,F401
from .hospital import Hospital  # noqa: E402,F401
from .app_user import AppUser  # noqa: E402,F401

__all__ = [
    "Base",
    "new_id",
    "utcnow",

    # Dispatch
    "EmergencyRequest",
    "Ambulance",

    # Records
    "Patient",
    "Report",
    "Hospital",

    # Users
    "AppUser",
]
