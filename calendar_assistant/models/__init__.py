"""Request models for the HTTP API."""

from .events import EventCreateRequest, EventPatchRequest

__all__ = ["EventCreateRequest", "EventPatchRequest"]
