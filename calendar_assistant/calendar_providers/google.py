"""Google Calendar provider implementation.

Talks to one calendar through the Calendar API v3. Credentials come either
from a service account JSON key or from an OAuth client plus refresh token.
The googleapiclient library is synchronous, so every request runs in the
default thread pool.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from google.oauth2 import credentials as user_credentials
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from calendar_assistant.errors import ProviderUnavailable
from calendar_assistant.timeutils import TimeWindow

from .base import BusyInterval, CalendarEvent, CalendarProvider, EventPatch

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(
        self,
        calendar_id: str = "primary",
        service_account_path: str = "",
        client_id: str = "",
        client_secret: str = "",
        refresh_token: str = "",
    ) -> None:
        if service_account_path:
            creds = Credentials.from_service_account_file(
                service_account_path, scopes=SCOPES
            )
        elif refresh_token and client_id and client_secret:
            creds = user_credentials.Credentials(
                token=None,
                refresh_token=refresh_token,
                client_id=client_id,
                client_secret=client_secret,
                token_uri=TOKEN_URI,
                scopes=SCOPES,
            )
        else:
            raise ValueError(
                "Google credentials must be provided: either a service account "
                "JSON path or an OAuth client id, secret and refresh token."
            )
        self._calendar_id = calendar_id
        self._credentials = creds
        self._service = build(
            "calendar", "v3", credentials=self._credentials, cache_discovery=False
        )

    @property
    def calendar_id(self) -> str:
        return self._calendar_id

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _execute(self, request, action: str) -> Any:
        """Run a prepared API request in the thread pool.

        Any failure is reported as ``ProviderUnavailable``.
        """
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, request.execute)
        except Exception as exc:
            logger.warning(
                "Google Calendar %s failed on %s: %s", action, self._calendar_id, exc
            )
            raise ProviderUnavailable(f"Google Calendar {action} failed: {exc}") from exc

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    @staticmethod
    def _parse_rfc3339(value: str) -> datetime:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @classmethod
    def _patch_body(cls, patch: EventPatch) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if patch.start is not None:
            body["start"] = {"dateTime": cls._to_rfc3339(patch.start)}
        if patch.end is not None:
            body["end"] = {"dateTime": cls._to_rfc3339(patch.end)}
        if patch.summary is not None:
            body["summary"] = patch.summary
        if patch.description is not None:
            body["description"] = patch.description
        if patch.location is not None:
            body["location"] = patch.location
        if patch.attendees is not None:
            body["attendees"] = [{"email": addr} for addr in patch.attendees]
        return body

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def fetch_busy(self, window: TimeWindow) -> list[BusyInterval]:
        """Query the freebusy API for the configured calendar.

        Intervals come back in whatever order Google reports them.
        """
        body = {
            "timeMin": self._to_rfc3339(window.start),
            "timeMax": self._to_rfc3339(window.end),
            "items": [{"id": self._calendar_id}],
        }
        response = await self._execute(
            self._service.freebusy().query(body=body), "freebusy query"
        )

        calendar = (response or {}).get("calendars", {}).get(self._calendar_id, {})
        if calendar.get("errors"):
            reasons = ", ".join(e.get("reason", "unknown") for e in calendar["errors"])
            raise ProviderUnavailable(f"Google Calendar rejected freebusy query: {reasons}")

        try:
            return [
                BusyInterval(
                    start=self._parse_rfc3339(interval["start"]),
                    end=self._parse_rfc3339(interval["end"]),
                )
                for interval in calendar.get("busy", [])
            ]
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed freebusy response for %s: %s", self._calendar_id, exc)
            raise ProviderUnavailable(f"Malformed freebusy response: {exc}") from exc

    async def list_events(self, window: TimeWindow) -> list[dict[str, Any]]:
        response = await self._execute(
            self._service.events().list(
                calendarId=self._calendar_id,
                timeMin=self._to_rfc3339(window.start),
                timeMax=self._to_rfc3339(window.end),
                singleEvents=True,
                orderBy="startTime",
            ),
            "events list",
        )
        return (response or {}).get("items", [])

    async def create_event(self, event: CalendarEvent) -> dict[str, Any]:
        """Insert an event, sending invitations to any attendees.

        When ``event.conference`` is set a Meet link is requested.
        """
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {"dateTime": self._to_rfc3339(event.start)},
            "end": {"dateTime": self._to_rfc3339(event.end)},
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.attendees:
            body["attendees"] = [{"email": addr} for addr in event.attendees]
        if event.conference:
            body["conferenceData"] = {
                "createRequest": {"requestId": f"req-{uuid.uuid4().hex}"}
            }

        result = await self._execute(
            self._service.events().insert(
                calendarId=self._calendar_id,
                body=body,
                conferenceDataVersion=1 if event.conference else 0,
                sendUpdates="all",
            ),
            "event insert",
        )
        logger.info("Created event %s on calendar %s", result["id"], self._calendar_id)
        return result

    async def update_event(
        self, event_id: str, patch: EventPatch, conference: bool = False
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "calendarId": self._calendar_id,
            "eventId": event_id,
            "body": self._patch_body(patch),
            "sendUpdates": "all",
        }
        if conference:
            params["conferenceDataVersion"] = 1

        result = await self._execute(
            self._service.events().patch(**params), "event patch"
        )
        logger.info("Updated event %s on calendar %s", event_id, self._calendar_id)
        return result

    async def cancel_event(self, event_id: str) -> None:
        await self._execute(
            self._service.events().delete(
                calendarId=self._calendar_id, eventId=event_id, sendUpdates="all"
            ),
            "event delete",
        )
        logger.info("Cancelled event %s on calendar %s", event_id, self._calendar_id)
