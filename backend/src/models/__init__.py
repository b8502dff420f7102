"""
SQLAlchemy models for the temple-events backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from backend.src.models.event import Event, EventStatus, HistoryAction
from backend.src.models.location import Location, LocationStatus

__all__ = [
    "Base",
    "Event",
    "EventStatus",
    "HistoryAction",
    "Location",
    "LocationStatus",
]
