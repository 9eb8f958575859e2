"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

from calendar_assistant.availability import SchedulingRules
from calendar_assistant.timeutils import resolve_zone

log = logging.getLogger("calendar_assistant.config")


class Settings(BaseSettings):
    # Calendar
    default_tz: str = "America/Chicago"
    calendar_id: str = "primary"

    # Scheduling rules
    work_days: str = "1,2,3,4,5"  # 0=Sun..6=Sat
    work_start_hour: int = 9
    work_end_hour: int = 17
    slot_interval_min: int = 30
    buffer_min: int = 10
    min_notice_min: int = 120

    # Google Calendar: service account, or OAuth client + refresh token
    google_service_account_json: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""

    # Access tokens
    api_key: str = ""
    action_token: str = ""
    summary_token: str = ""

    # Vonage voice
    vonage_signature_secret: str = ""
    vonage_application_id: str = ""
    vonage_private_key_b64: str = ""
    vonage_number: str = ""
    public_base_url: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def parsed_work_days(self) -> frozenset[int]:
        try:
            return frozenset(int(n.strip()) for n in self.work_days.split(",") if n.strip())
        except ValueError as exc:
            raise ValueError(
                f"WORK_DAYS must be comma-separated weekday numbers, got {self.work_days!r}"
            ) from exc

    def scheduling_rules(self) -> SchedulingRules:
        """Build the immutable rule set. Raises ``ValueError`` on bad values."""
        return SchedulingRules(
            work_days=self.parsed_work_days(),
            work_start_hour=self.work_start_hour,
            work_end_hour=self.work_end_hour,
            slot_interval_minutes=self.slot_interval_min,
            buffer_minutes=self.buffer_min,
            min_notice_minutes=self.min_notice_min,
        )

    @property
    def has_google_credentials(self) -> bool:
        if self.google_service_account_json:
            return True
        return bool(
            self.google_client_id and self.google_client_secret and self.google_refresh_token
        )

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        # Rules and timezone must be usable before we accept requests
        self.scheduling_rules()
        resolve_zone(self.default_tz)

        if not self.api_key:
            if self.debug:
                warnings.append("API_KEY not set. Admin APIs are open (DEBUG=true).")
            else:
                warnings.append(
                    "API_KEY not set. Admin APIs are locked in production. "
                    "Set API_KEY in .env to enable admin access."
                )

        if not self.has_google_credentials:
            warnings.append(
                "No Google credentials configured. Calendar endpoints will return 502."
            )

        if not self.public_base_url:
            warnings.append("PUBLIC_BASE_URL not set. Vonage input callbacks will be relative.")

        return warnings


settings = Settings()
