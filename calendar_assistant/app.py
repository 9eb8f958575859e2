"""FastAPI application: HTTP endpoints for the calendar assistant.

Endpoints:

  GET    /health                  Health check
  GET    /summary/next-week       Public, sanitized next-week summary (?token=)
  GET    /events/next-week        Raw events for next week
  GET    /events                  Events in a date or timestamp range
  GET    /events/today            Events for the current local day
  GET    /freebusy                Busy intervals in a range
  GET    /availability            Bookable starts for one day
  POST   /events                  Create an event (Meet link by default)
  PATCH  /events/{id}             Reschedule or edit an event
  DELETE /events/{id}             Cancel an event
  GET    /action/create|reschedule|delete
                                  One-click links guarded by ACTION_TOKEN
  POST   /jobs/daily-summary      Today's events (for a cron trigger)
  POST   /jobs/next-week-summary  Next week's events (for a cron trigger)
  GET    /vonage/answer           Vonage answer URL → NCCO
  POST   /vonage/input            Vonage input webhook → NCCO
  POST   /vonage/call/start       Trigger an outbound call

Everything except /health, /summary/next-week, /action/* and the Vonage
webhooks requires the API key.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

# Configure root logger early so every calendar_assistant.* logger has a
# handler when run via `uvicorn calendar_assistant.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from calendar_assistant import __version__
from calendar_assistant.auth import (
    get_settings,
    require_action_token,
    require_api_key,
    require_summary_token,
)
from calendar_assistant.availability import AvailabilityEngine, Clock
from calendar_assistant.calendar_providers.base import (
    BusyInterval,
    CalendarEvent,
    CalendarProvider,
    EventPatch,
)
from calendar_assistant.config import Settings, settings as default_settings
from calendar_assistant.errors import (
    InvalidDate,
    InvalidDuration,
    InvalidRequest,
    ProviderUnavailable,
)
from calendar_assistant.models.events import EventCreateRequest, EventPatchRequest
from calendar_assistant.timeutils import (
    TimeWindow,
    local_today,
    next_week_window,
    normalize_range,
    to_iso,
    today_range,
    utc_now,
)
from calendar_assistant.voice import vonage

log = logging.getLogger("calendar_assistant.app")


class UnconfiguredCalendar(CalendarProvider):
    """Stand-in used when no Google credentials are configured.

    Every call fails with ``ProviderUnavailable`` so the API still starts and
    reports a clear upstream error.
    """

    def _fail(self):
        raise ProviderUnavailable("Calendar provider not configured")

    async def fetch_busy(self, window: TimeWindow) -> list[BusyInterval]:
        self._fail()

    async def list_events(self, window: TimeWindow) -> list[dict[str, Any]]:
        self._fail()

    async def create_event(self, event: CalendarEvent) -> dict[str, Any]:
        self._fail()

    async def update_event(
        self, event_id: str, patch: EventPatch, conference: bool = False
    ) -> dict[str, Any]:
        self._fail()

    async def cancel_event(self, event_id: str) -> None:
        self._fail()


def _create_provider(settings: Settings) -> CalendarProvider:
    """Build the Google provider, or a failing stand-in when unconfigured."""
    if not settings.has_google_credentials:
        return UnconfiguredCalendar()
    from calendar_assistant.calendar_providers.google import GoogleCalendarProvider

    return GoogleCalendarProvider(
        calendar_id=settings.calendar_id,
        service_account_path=settings.google_service_account_json,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        refresh_token=settings.google_refresh_token,
    )


# ── Request-scoped accessors ──────────────────────────────────────


def get_provider(request: Request) -> CalendarProvider:
    return request.app.state.provider


def get_engine(request: Request) -> AvailabilityEngine:
    return request.app.state.engine


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def _resolve_tz(tz: Optional[str], settings: Settings) -> str:
    return tz or settings.default_tz


def _window_json(window: TimeWindow) -> dict[str, str]:
    return {"timeMin": to_iso(window.start), "timeMax": to_iso(window.end)}


# ── Public routes ─────────────────────────────────────────────────

public = APIRouter()


@public.get("/health")
async def health() -> PlainTextResponse:
    return PlainTextResponse("OK")


@public.get("/summary/next-week", dependencies=[Depends(require_summary_token)])
async def summary_next_week(
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
):
    """Next week's events with titles only, safe to share."""
    window = next_week_window(settings.default_tz, clock())
    items = await provider.list_events(window)
    sanitized = [
        {
            "id": e.get("id"),
            "when": {"start": e.get("start"), "end": e.get("end")},
            "title": e.get("summary") or "Busy",
        }
        for e in items
    ]
    return {**_window_json(window), "items": sanitized}


# ── Admin routes (API key) ────────────────────────────────────────

admin = APIRouter(dependencies=[Depends(require_api_key)])


@admin.get("/events/next-week")
async def events_next_week(
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
):
    return await provider.list_events(next_week_window(settings.default_tz, clock()))


@admin.get("/events/today")
async def events_today(
    tz: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
):
    return await provider.list_events(today_range(_resolve_tz(tz, settings), clock()))


@admin.get("/events")
async def events_in_range(
    start: Optional[str] = None,
    end: Optional[str] = None,
    tz: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
):
    window = normalize_range(start, end, _resolve_tz(tz, settings))
    return await provider.list_events(window)


@admin.get("/freebusy")
async def freebusy(
    start: Optional[str] = None,
    end: Optional[str] = None,
    tz: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
):
    window = normalize_range(start, end, _resolve_tz(tz, settings))
    busy = await provider.fetch_busy(window)
    return {
        **_window_json(window),
        "busy": [{"start": to_iso(b.start), "end": to_iso(b.end)} for b in busy],
    }


@admin.get("/availability")
async def availability(
    date: Optional[str] = None,
    duration: str = Query(default="30"),
    tz: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Bookable start times for ``date`` as ``[{"startISO": ...}]``."""
    if not date:
        raise InvalidDate("date (YYYY-MM-DD) required")
    try:
        minutes = int(duration)
    except ValueError as exc:
        raise InvalidDuration(f"duration must be whole minutes, got {duration!r}") from exc
    slots = await engine.compute_availability(date, minutes, _resolve_tz(tz, settings))
    return [slot.to_dict() for slot in slots]


@admin.post("/events")
async def create_event(
    body: EventCreateRequest,
    provider: CalendarProvider = Depends(get_provider),
):
    return await provider.create_event(body.to_event())


@admin.patch("/events/{event_id}")
async def update_event(
    event_id: str,
    body: EventPatchRequest,
    provider: CalendarProvider = Depends(get_provider),
):
    return await provider.update_event(
        event_id, body.to_patch(), conference=body.conference
    )


@admin.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    provider: CalendarProvider = Depends(get_provider),
):
    await provider.cancel_event(event_id)
    return {"ok": True}


@admin.post("/jobs/daily-summary")
async def daily_summary(
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
):
    tz = settings.default_tz
    now = clock()
    items = await provider.list_events(today_range(tz, now))
    # TODO: deliver by email/SMS instead of only returning JSON.
    return {"date": local_today(tz, now).isoformat(), "count": len(items), "items": items}


@admin.post("/jobs/next-week-summary")
async def next_week_summary(
    settings: Settings = Depends(get_settings),
    provider: CalendarProvider = Depends(get_provider),
    clock: Clock = Depends(get_clock),
):
    window = next_week_window(settings.default_tz, clock())
    items = await provider.list_events(window)
    return {**_window_json(window), "count": len(items), "items": items}


@admin.post("/vonage/call/start")
async def vonage_call_start(
    to_number: str = Body(default="", alias="toNumber", embed=True),
    settings: Settings = Depends(get_settings),
):
    await vonage.start_outbound_call(
        to_number,
        application_id=settings.vonage_application_id,
        private_key_b64=settings.vonage_private_key_b64,
        from_number=settings.vonage_number,
        base_url=settings.public_base_url,
    )
    return {"ok": True}


# ── One-click action links (ACTION_TOKEN) ─────────────────────────

actions = APIRouter(prefix="/action", dependencies=[Depends(require_action_token)])


@actions.get("/create")
async def action_create(
    request: Request,
    provider: CalendarProvider = Depends(get_provider),
):
    params = {
        k: v
        for k, v in request.query_params.items()
        if k in ("summary", "startISO", "endISO", "description", "location")
    }
    try:
        body = EventCreateRequest.model_validate(params)
    except ValidationError as exc:
        raise InvalidRequest("summary, startISO, endISO required") from exc
    data = await provider.create_event(body.to_event())
    return {"ok": True, "id": data.get("id")}


@actions.get("/reschedule")
async def action_reschedule(
    request: Request,
    event_id: Optional[str] = Query(default=None, alias="id"),
    provider: CalendarProvider = Depends(get_provider),
):
    if not event_id:
        raise InvalidRequest("id required")
    params = {
        k: v
        for k, v in request.query_params.items()
        if k in ("startISO", "endISO", "summary", "description", "location")
    }
    try:
        body = EventPatchRequest.model_validate(params)
    except ValidationError as exc:
        raise InvalidRequest(f"Invalid reschedule parameters: {exc}") from exc
    data = await provider.update_event(event_id, body.to_patch(), conference=True)
    return {"ok": True, "id": data.get("id")}


@actions.get("/delete")
async def action_delete(
    event_id: Optional[str] = Query(default=None, alias="id"),
    provider: CalendarProvider = Depends(get_provider),
):
    if not event_id:
        raise InvalidRequest("id required")
    await provider.cancel_event(event_id)
    return {"ok": True}


# ── Vonage voice webhooks (signature checked, no API key) ─────────

voice = APIRouter(prefix="/vonage")


@voice.get("/answer")
async def vonage_answer(
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """Vonage Answer URL: greet the caller and listen."""
    if not vonage.verify_signature(
        request.headers.get("authorization"), settings.vonage_signature_secret
    ):
        return Response(status_code=401)
    return vonage.answer_ncco(settings.public_base_url, settings.default_tz)


@voice.post("/input")
async def vonage_input(
    request: Request,
    tz: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Vonage input webhook: route the caller's words, answer with a new NCCO."""
    if not vonage.verify_signature(
        request.headers.get("authorization"), settings.vonage_signature_secret
    ):
        return Response(status_code=401)

    tz = _resolve_tz(tz, settings)
    try:
        body = await request.json()
    except ValueError:
        log.warning("Vonage input webhook without a JSON body")
        body = {}

    utterance = vonage.extract_utterance(body if isinstance(body, dict) else {})
    text = await vonage.respond_to_input(utterance, tz, engine)
    return vonage.talk_and_listen(text, settings.public_base_url, tz)


# ── Application factory ───────────────────────────────────────────


def create_app(
    settings: Settings | None = None,
    provider: CalendarProvider | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Rules are built once here and shared read-only by every request.
    """
    settings = settings or default_settings
    for warning in settings.validate_startup():
        log.warning(warning)

    rules = settings.scheduling_rules()
    provider = provider or _create_provider(settings)

    app = FastAPI(
        title="Calendar Assistant",
        description="Calendar queries, bookings and availability over one Google calendar",
        version=__version__,
    )
    app.state.settings = settings
    app.state.provider = provider
    app.state.clock = clock
    app.state.engine = AvailabilityEngine(rules, provider, clock=clock)

    @app.exception_handler(InvalidRequest)
    async def invalid_request(request: Request, exc: InvalidRequest) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
        return JSONResponse(
            {"error": f"Invalid {field}: {first.get('msg', 'validation failed')}"},
            status_code=400,
        )

    @app.exception_handler(ProviderUnavailable)
    async def provider_unavailable(request: Request, exc: ProviderUnavailable) -> JSONResponse:
        log.error("Upstream failure on %s: %s", request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=502)

    app.include_router(public)
    app.include_router(voice)
    app.include_router(actions)
    app.include_router(admin)

    log.info(
        "Calendar assistant ready (calendar=%s, tz=%s, rules=%s)",
        settings.calendar_id, settings.default_tz, rules.model_dump(),
    )
    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "calendar_assistant.app:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_config=log_config,
    )
