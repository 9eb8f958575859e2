"""Error taxonomy shared by the availability engine and the HTTP layer.

Caller errors (``InvalidRequest`` subclasses) map to 400 responses;
``ProviderUnavailable`` maps to 502 so clients can tell "no slots" apart
from "could not check".
"""

from __future__ import annotations


class CalendarAssistantError(Exception):
    """Base class for all calendar assistant failures."""


class InvalidRequest(CalendarAssistantError):
    """The caller supplied input that cannot be scheduled against."""


class InvalidDate(InvalidRequest):
    pass


class InvalidDuration(InvalidRequest):
    pass


class InvalidRange(InvalidRequest):
    pass


class InvalidTimezone(InvalidRequest):
    pass


class ProviderUnavailable(CalendarAssistantError):
    """The external calendar could not be reached or rejected the request."""
