"""Pydantic models for event create and reschedule requests.

Field names on the wire follow the calendar links already in circulation
(``startISO`` / ``endISO``); Python code uses snake_case.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from calendar_assistant.calendar_providers.base import CalendarEvent, EventPatch
from calendar_assistant.errors import InvalidRange, InvalidRequest


def _assume_utc(dt: datetime) -> datetime:
    """Timestamps without an offset are taken as UTC."""
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class EventCreateRequest(BaseModel):
    """Body of ``POST /events``."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(min_length=1)
    start_iso: datetime = Field(alias="startISO")
    end_iso: datetime = Field(alias="endISO")
    description: str = ""
    location: str = ""
    attendees: list[str] = []  # email addresses
    conference: bool = True

    @field_validator("start_iso", "end_iso")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return _assume_utc(v)

    def to_event(self) -> CalendarEvent:
        if self.end_iso <= self.start_iso:
            raise InvalidRange("endISO must be after startISO")
        return CalendarEvent(
            summary=self.summary,
            start=self.start_iso,
            end=self.end_iso,
            description=self.description,
            location=self.location,
            attendees=list(self.attendees),
            conference=self.conference,
        )


class EventPatchRequest(BaseModel):
    """Body of ``PATCH /events/{id}``. Omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    start_iso: Optional[datetime] = Field(default=None, alias="startISO")
    end_iso: Optional[datetime] = Field(default=None, alias="endISO")
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[list[str]] = None
    conference: bool = False

    @field_validator("start_iso", "end_iso")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _assume_utc(v) if v is not None else None

    def to_patch(self) -> EventPatch:
        if self.start_iso and self.end_iso and self.end_iso <= self.start_iso:
            raise InvalidRange("endISO must be after startISO")
        patch = EventPatch(
            start=self.start_iso,
            end=self.end_iso,
            summary=self.summary,
            description=self.description,
            location=self.location,
            attendees=self.attendees,
        )
        if patch.is_empty():
            raise InvalidRequest("Nothing to update")
        return patch
