"""
Service layer for the ambulance dispatch backend.

This package contains the data-access facade, the dispatch workflow and the
real-time layer built on the change feed.
"""

from .change_feed import ChangeEvent, ChangeFeed
from .data_access import DataAccess, DataAccessError, RecordNotFound
from .dispatch import DispatchService

__all__ = ["ChangeEvent", "ChangeFeed", "DataAccess", "DataAccessError", "RecordNotFound", "DispatchService"]
