"""Ambulance dispatch backend: dispatch workflow, change feed and operator API."""

__version__ = "0.1.0"
