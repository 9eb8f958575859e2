"""Vonage Voice IVR: NCCO builders, intent routing and outbound calls.

Inbound flow:
  1. Vonage hits GET /vonage/answer → greeting + speech/DTMF input action
  2. Caller speaks → Vonage POSTs the ASR result to /vonage/input
  3. We route on keywords (help / list / book) and answer with another NCCO

Intent detection is a keyword stub; there is no date understanding.

Signed webhooks (when VONAGE_SIGNATURE_SECRET is set) carry an HS256 JWT in
the Authorization header. Outbound calls authenticate with an RS256 JWT
signed by the application's private key.

Protocol reference:
  https://developer.vonage.com/en/voice/voice-api/ncco-reference
"""

from __future__ import annotations

import base64
import logging
import re
import time
import uuid
from typing import Any
from urllib.parse import quote

import httpx
import jwt

from calendar_assistant.availability import AvailabilityEngine, CandidateSlot
from calendar_assistant.errors import CalendarAssistantError, InvalidRequest, ProviderUnavailable
from calendar_assistant.timeutils import local_today, resolve_zone

log = logging.getLogger("calendar_assistant.vonage")

VONAGE_CALLS_URL = "https://api.nexmo.com/v1/calls"

GREETING = (
    'Hi, this is the calendar assistant. Say "book" to schedule, '
    '"list" to hear available times, or "help" for options.'
)
FALLBACK = "Sorry, I did not catch that. You can say book, list, or help."
HELP_TEXT = "Say book to schedule a time. Say list to hear available times today."
BOOK_PROMPT = (
    'Okay, say a date like "this Friday" or "August 20th", '
    "then a time like 3 PM, or say today."
)
NO_OPENINGS = "No openings left today. Say book to try another day."
SNAG = "I hit a snag checking availability. Please try again later."

LIST_DURATION_MINUTES = 30
LIST_LIMIT = 5

_HELP = re.compile(r"\bhelp\b")
_LIST = re.compile(r"\b(list|available)\b")
_BOOK = re.compile(r"\bbook\b")


def redact_pii(value: str) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


# ── NCCO builders ──────────────────────────────────────────────────


def input_url(base_url: str, tz: str) -> str:
    return f"{base_url.rstrip('/')}/vonage/input?tz={quote(tz, safe='')}"


def talk_and_listen(text: str, base_url: str, tz: str) -> list[dict[str, Any]]:
    """NCCO that speaks ``text`` then waits for speech or one DTMF digit."""
    return [
        {"action": "talk", "text": text},
        {
            "action": "input",
            "type": ["speech", "dtmf"],
            "dtmf": {"maxDigits": 1, "timeOut": 5},
            "speech": {"language": "en-US", "endOnSilence": 1},
            "eventUrl": [input_url(base_url, tz)],
        },
    ]


def answer_ncco(base_url: str, tz: str) -> list[dict[str, Any]]:
    return talk_and_listen(GREETING, base_url, tz)


# ── Inbound input handling ─────────────────────────────────────────


def extract_utterance(body: dict[str, Any] | None) -> str:
    """Pull the top ASR result out of a Vonage input webhook body."""
    results = ((body or {}).get("speech") or {}).get("results") or []
    if not results:
        return ""
    return str(results[0].get("text") or "").lower()


def format_slot(slot: CandidateSlot, tz: str) -> str:
    """Spoken form of a slot start, e.g. ``Mon Mar 16 9:00am``."""
    local = slot.start_instant.astimezone(resolve_zone(tz))
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local:%a %b} {local.day} {hour}:{local:%M}{meridiem}"


async def respond_to_input(utterance: str, tz: str, engine: AvailabilityEngine) -> str:
    """Route a caller utterance to the text we speak back."""
    if _HELP.search(utterance):
        return HELP_TEXT

    if _LIST.search(utterance):
        try:
            today = local_today(tz, engine.clock())
            slots = await engine.compute_availability(today, LIST_DURATION_MINUTES, tz)
        except CalendarAssistantError as exc:
            log.warning("IVR availability lookup failed: %s", exc)
            return SNAG

        if not slots:
            return NO_OPENINGS
        first_few = [
            f"{i}. {format_slot(slot, tz)}"
            for i, slot in enumerate(slots[:LIST_LIMIT], start=1)
        ]
        return (
            f"Here are some times: {'. '.join(first_few)}. "
            "Say book and then say the number you want."
        )

    if _BOOK.search(utterance):
        return BOOK_PROMPT

    return FALLBACK


# ── Webhook signatures ─────────────────────────────────────────────


def verify_signature(authorization: str | None, secret: str) -> bool:
    """Check a signed-webhook JWT. Unsigned webhooks pass when no secret is set."""
    if not secret:
        return True
    token = re.sub(r"^Bearer\s+", "", authorization or "", flags=re.IGNORECASE).strip()
    if not token:
        return False
    try:
        jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.InvalidTokenError as exc:
        log.warning("Rejected Vonage webhook: %s", exc)
        return False
    return True


# ── Outbound calls ─────────────────────────────────────────────────


def application_jwt(application_id: str, private_key_pem: str, now: float | None = None) -> str:
    """Short-lived RS256 token authenticating as the Vonage application."""
    issued = int(now if now is not None else time.time())
    claims = {
        "application_id": application_id,
        "iat": issued,
        "exp": issued + 60 * 5,
        "jti": f"jwt-{uuid.uuid4().hex}",
    }
    return jwt.encode(claims, private_key_pem, algorithm="RS256")


async def start_outbound_call(
    to_number: str,
    *,
    application_id: str,
    private_key_b64: str,
    from_number: str,
    base_url: str,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Ask Vonage to dial ``to_number`` and run our answer NCCO.

    Raises:
        InvalidRequest: Vonage credentials are not configured or no number given.
        ProviderUnavailable: the Vonage API call failed.
    """
    if not application_id or not private_key_b64:
        raise InvalidRequest("Vonage credentials not configured")
    if not to_number:
        raise InvalidRequest("toNumber required")

    private_key = base64.b64decode(private_key_b64).decode("utf-8")
    token = application_jwt(application_id, private_key)
    payload = {
        "to": [{"type": "phone", "number": to_number}],
        "from": {"type": "phone", "number": from_number},
        "answer_url": [f"{base_url.rstrip('/')}/vonage/answer"],
    }

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10.0)
    try:
        response = await client.post(
            VONAGE_CALLS_URL,
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        log.warning("Vonage outbound call to %s failed: %s", redact_pii(to_number), exc)
        raise ProviderUnavailable(f"Vonage call failed: {exc}") from exc
    finally:
        if owns_client:
            await client.aclose()

    log.info("Outbound call requested to %s", redact_pii(to_number))
    return response.json() if response.content else {}
