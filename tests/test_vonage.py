"""Tests for the Vonage IVR: NCCO building, keyword routing, signatures and outbound calls."""

import base64
import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from calendar_assistant.availability import AvailabilityEngine, CandidateSlot, SchedulingRules
from calendar_assistant.errors import InvalidRequest, ProviderUnavailable
from calendar_assistant.voice.vonage import (
    BOOK_PROMPT,
    FALLBACK,
    GREETING,
    HELP_TEXT,
    NO_OPENINGS,
    SNAG,
    VONAGE_CALLS_URL,
    answer_ncco,
    application_jwt,
    extract_utterance,
    format_slot,
    input_url,
    redact_pii,
    respond_to_input,
    start_outbound_call,
    verify_signature,
)

from tests.fakes import TZ, FakeCalendar, busy, local

SECRET = "vonage-signing-secret-0123456789abcdef"


def make_engine(now, **kwargs) -> AvailabilityEngine:
    return AvailabilityEngine(SchedulingRules(), FakeCalendar(**kwargs), clock=lambda: now)


@pytest.fixture(scope="module")
def rsa_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return key, pem


# ── NCCO builders ──────────────────────────────────────────────────


class TestNcco:
    def test_answer_greets_then_listens(self):
        ncco = answer_ncco("https://cal.example.com", TZ)
        assert ncco[0] == {"action": "talk", "text": GREETING}
        listen = ncco[1]
        assert listen["action"] == "input"
        assert listen["type"] == ["speech", "dtmf"]
        assert listen["dtmf"] == {"maxDigits": 1, "timeOut": 5}
        assert listen["speech"]["language"] == "en-US"
        assert listen["eventUrl"] == ["https://cal.example.com/vonage/input?tz=America%2FChicago"]

    def test_input_url_trims_trailing_slash(self):
        assert input_url("https://cal.example.com/", "UTC") == (
            "https://cal.example.com/vonage/input?tz=UTC"
        )

    def test_input_url_relative_without_base(self):
        assert input_url("", "UTC") == "/vonage/input?tz=UTC"


class TestExtractUtterance:
    def test_top_result_lowercased(self):
        body = {"speech": {"results": [{"text": "List Times"}, {"text": "lisp times"}]}}
        assert extract_utterance(body) == "list times"

    @pytest.mark.parametrize(
        "body",
        [None, {}, {"speech": {}}, {"speech": {"results": []}}, {"dtmf": {"digits": "1"}}],
    )
    def test_missing_speech(self, body):
        assert extract_utterance(body) == ""


class TestFormatSlot:
    def test_afternoon(self):
        assert format_slot(CandidateSlot(local(2026, 3, 16, 13, 5)), TZ) == "Mon Mar 16 1:05pm"

    def test_noon_and_midnight(self):
        assert format_slot(CandidateSlot(local(2026, 3, 16, 12)), TZ) == "Mon Mar 16 12:00pm"
        assert format_slot(CandidateSlot(local(2026, 3, 17, 0)), TZ) == "Tue Mar 17 12:00am"


class TestRedactPii:
    def test_phone_number(self):
        assert redact_pii("15552223333") == "155***33"

    def test_short_values(self):
        assert redact_pii("123") == "***"
        assert redact_pii("") == "***"


# ── Keyword routing ────────────────────────────────────────────────


class TestRespondToInput:
    async def test_help(self):
        assert await respond_to_input("help", TZ, make_engine(local(2026, 3, 16, 7))) == HELP_TEXT

    async def test_book(self):
        engine = make_engine(local(2026, 3, 16, 7))
        assert await respond_to_input("i want to book", TZ, engine) == BOOK_PROMPT

    async def test_keywords_match_whole_words(self):
        engine = make_engine(local(2026, 3, 16, 7))
        assert await respond_to_input("bookkeeping", TZ, engine) == FALLBACK

    async def test_unknown(self):
        engine = make_engine(local(2026, 3, 16, 7))
        assert await respond_to_input("", TZ, engine) == FALLBACK

    async def test_help_wins_over_list(self):
        engine = make_engine(local(2026, 3, 16, 7))
        assert await respond_to_input("help me list", TZ, engine) == HELP_TEXT

    async def test_list_reads_remaining_slots(self):
        engine = make_engine(
            local(2026, 3, 16, 12),
            busy=[busy(local(2026, 3, 16, 14), local(2026, 3, 16, 15))],
        )
        # Notice pushes the first start to 14:00; the meeting plus buffer blocks until 15:30.
        text = await respond_to_input("list", TZ, engine)
        assert text == (
            "Here are some times: 1. Mon Mar 16 3:30pm. 2. Mon Mar 16 4:00pm. "
            "3. Mon Mar 16 4:30pm. Say book and then say the number you want."
        )

    async def test_list_without_openings(self):
        engine = make_engine(local(2026, 3, 16, 15, 30))
        assert await respond_to_input("what's available", TZ, engine) == NO_OPENINGS

    async def test_list_on_weekend(self):
        engine = make_engine(local(2026, 3, 14, 9))
        assert await respond_to_input("list", TZ, engine) == NO_OPENINGS

    async def test_list_uses_local_date(self):
        # 02:00 UTC Tuesday is still Monday evening in Chicago: nothing left today.
        engine = make_engine(local(2026, 3, 16, 21))
        assert await respond_to_input("list", TZ, engine) == NO_OPENINGS

    async def test_provider_failure_apologises(self):
        engine = make_engine(
            local(2026, 3, 16, 7), error=ProviderUnavailable("freebusy timed out")
        )
        assert await respond_to_input("list", TZ, engine) == SNAG


# ── Webhook signatures ─────────────────────────────────────────────


class TestVerifySignature:
    def test_no_secret_accepts_anything(self):
        assert verify_signature(None, "")
        assert verify_signature("Bearer garbage", "")

    def test_missing_header(self):
        assert not verify_signature(None, SECRET)
        assert not verify_signature("Bearer ", SECRET)

    def test_valid_token(self):
        token = jwt.encode({"application_id": "app-1"}, SECRET, algorithm="HS256")
        assert verify_signature(f"Bearer {token}", SECRET)
        assert verify_signature(f"bearer {token}", SECRET)

    def test_wrong_secret(self):
        token = jwt.encode(
            {"application_id": "app-1"}, "another-secret-0123456789abcdefgh", algorithm="HS256"
        )
        assert not verify_signature(f"Bearer {token}", SECRET)

    def test_expired_token(self):
        token = jwt.encode({"exp": 1_000_000_000}, SECRET, algorithm="HS256")
        assert not verify_signature(f"Bearer {token}", SECRET)


# ── Outbound calls ─────────────────────────────────────────────────


class TestApplicationJwt:
    def test_claims(self, rsa_key):
        key, pem = rsa_key
        token = application_jwt("app-1", pem, now=1_773_640_800)
        claims = jwt.decode(
            token, key.public_key(), algorithms=["RS256"], options={"verify_exp": False}
        )
        assert claims["application_id"] == "app-1"
        assert claims["iat"] == 1_773_640_800
        assert claims["exp"] - claims["iat"] == 300
        assert claims["jti"].startswith("jwt-")

    def test_unique_jti(self, rsa_key):
        _, pem = rsa_key
        first = jwt.decode(application_jwt("app-1", pem), options={"verify_signature": False})
        second = jwt.decode(application_jwt("app-1", pem), options={"verify_signature": False})
        assert first["jti"] != second["jti"]


class TestStartOutboundCall:
    @pytest.fixture
    def call_kwargs(self, rsa_key):
        _, pem = rsa_key
        return dict(
            application_id="app-1",
            private_key_b64=base64.b64encode(pem.encode("utf-8")).decode("ascii"),
            from_number="15550001111",
            base_url="https://cal.example.com/",
        )

    async def test_posts_call(self, call_kwargs, rsa_key):
        key, _ = rsa_key
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"uuid": "call-1", "status": "started"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await start_outbound_call("15552223333", client=client, **call_kwargs)

        assert result == {"uuid": "call-1", "status": "started"}
        request = seen[0]
        assert str(request.url) == VONAGE_CALLS_URL
        assert json.loads(request.content) == {
            "to": [{"type": "phone", "number": "15552223333"}],
            "from": {"type": "phone", "number": "15550001111"},
            "answer_url": ["https://cal.example.com/vonage/answer"],
        }
        token = request.headers["Authorization"].removeprefix("Bearer ")
        claims = jwt.decode(token, key.public_key(), algorithms=["RS256"])
        assert claims["application_id"] == "app-1"

    async def test_http_error(self, call_kwargs):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"title": "Unauthorized"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ProviderUnavailable):
                await start_outbound_call("15552223333", client=client, **call_kwargs)

    async def test_transport_error(self, call_kwargs):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ProviderUnavailable):
                await start_outbound_call("15552223333", client=client, **call_kwargs)

    async def test_missing_credentials(self, call_kwargs):
        call_kwargs["application_id"] = ""
        with pytest.raises(InvalidRequest, match="credentials"):
            await start_outbound_call("15552223333", **call_kwargs)

    async def test_missing_number(self, call_kwargs):
        with pytest.raises(InvalidRequest, match="toNumber"):
            await start_outbound_call("", **call_kwargs)
