"""Calendar provider abstractions and implementations."""

from .base import (
    BusyInterval,
    BusyIntervalProvider,
    CalendarEvent,
    CalendarProvider,
    EventPatch,
)

__all__ = [
    "BusyInterval",
    "BusyIntervalProvider",
    "CalendarEvent",
    "CalendarProvider",
    "EventPatch",
]
