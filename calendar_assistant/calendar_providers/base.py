"""Abstract base classes for calendar providers.

The availability engine only needs ``BusyIntervalProvider.fetch_busy``.
The HTTP surface additionally reads and writes events through
``CalendarProvider``. Any calendar backend implements these ABCs; tests
substitute fakes returning canned busy sets.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from calendar_assistant.timeutils import TimeWindow


@dataclass(frozen=True)
class BusyInterval:
    """A span the calendar reports as occupied.

    Providers may return these unsorted and overlapping.
    """

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Open intersection: touching endpoints do not count."""
        return start < self.end and end > self.start


@dataclass
class CalendarEvent:
    """An event to be created on the calendar."""

    summary: str
    start: datetime
    end: datetime
    description: str = ""
    location: str = ""
    attendees: list[str] = field(default_factory=list)  # email addresses
    conference: bool = True


@dataclass
class EventPatch:
    """Partial update for an existing event. ``None`` means "leave as is"."""

    start: datetime | None = None
    end: datetime | None = None
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    attendees: list[str] | None = None

    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in ("start", "end", "summary", "description", "location", "attendees")
        )


class BusyIntervalProvider(ABC):
    """Source of busy intervals for a single calendar."""

    @abstractmethod
    async def fetch_busy(self, window: TimeWindow) -> list[BusyInterval]:
        """Return every busy interval intersecting ``window``.

        Raises:
            ProviderUnavailable: the calendar could not be reached or
                rejected the window.
        """


class CalendarProvider(BusyIntervalProvider):
    """Full calendar backend: busy lookup plus event reads and writes.

    Subclasses must implement event listing, creation, patching and
    cancellation in addition to ``fetch_busy``.
    """

    @abstractmethod
    async def list_events(self, window: TimeWindow) -> list[dict[str, Any]]:
        """Return single (expanded) events in ``window`` ordered by start."""

    @abstractmethod
    async def create_event(self, event: CalendarEvent) -> dict[str, Any]:
        """Create an event and return the provider's representation of it."""

    @abstractmethod
    async def update_event(
        self, event_id: str, patch: EventPatch, conference: bool = False
    ) -> dict[str, Any]:
        """Apply ``patch`` to an existing event and return the updated event."""

    @abstractmethod
    async def cancel_event(self, event_id: str) -> None:
        """Delete an event, notifying attendees."""
