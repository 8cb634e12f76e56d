# dinnerbot/config/settings.py
"""
Application configuration using pydantic-settings (pydantic v2 style).

This centralizes environment-driven configuration. Prefer reading values
from environment variables; do not rely on os.getenv inline defaults which
can silently hide missing configuration.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application configuration loaded from environment.

    Relevant environment variables:
      - SUPABASE_URL
      - SUPABASE_SERVICE_ROLE_KEY
      - DATABASE_URL
      - OPENAI_API_KEY / OPENAI_MODEL
      - OPENWEATHER_API_KEY / WEATHER_LAT / WEATHER_LON
      - TWILIO_ACCOUNT_SID
      - TWILIO_AUTH_TOKEN
      - TWILIO_PHONE_NUMBER
      - INVITE_CODES / INVITE_PREFIX
      - TASKS_TOKEN
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)
    database_url: Optional[str] = Field(default=None)
    auto_create_schema: bool = Field(default=False)

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")

    # OpenWeatherMap (Tokyo by default)
    openweather_api_key: Optional[str] = Field(default=None)
    weather_lat: float = Field(default=35.6762)
    weather_lon: float = Field(default=139.6503)

    # Twilio
    twilio_account_sid: Optional[str] = Field(default=None)
    twilio_auth_token: Optional[str] = Field(default=None)
    twilio_phone_number: Optional[str] = Field(default=None)

    # Invitation gate (INVITE_CODES is comma separated)
    invite_codes: str = Field(default="family2024")
    invite_prefix: str = Field(default="INVITE-")

    # Recommendation behaviour
    session_window_hours: int = Field(default=24)
    meal_history_days: int = Field(default=14)
    dish_enrichment_enabled: bool = Field(default=False)
    recommendation_max_tokens: int = Field(default=1000)
    recommendation_temperature: float = Field(default=0.9)

    # Timeouts (seconds)
    store_timeout_seconds: float = Field(default=5.0)
    weather_timeout_seconds: float = Field(default=5.0)
    completion_timeout_seconds: float = Field(default=25.0)
    extraction_timeout_seconds: float = Field(default=10.0)

    # Protects the scheduled push endpoint
    tasks_token: Optional[str] = Field(default=None)

    # --- validators / post-init checks ---
    @field_validator("supabase_url", "supabase_service_role_key")
    @classmethod
    def maybe_strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip()

    @property
    def invite_code_list(self) -> List[str]:
        return [p.strip() for p in (self.invite_codes or "").split(",") if p.strip()]

    def model_post_init(self, __context) -> None:  # pydantic v2 hooks
        """
        Light-weight notice that runs after model is constructed.
        Uses logging (not print) so messages show up in server logs.
        """
        if not self.supabase_url or not self.supabase_service_role_key:
            logger.warning(
                "Supabase credentials are not configured. "
                "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY to enable DB features."
            )
        if not self.openai_api_key:
            logger.info(
                "OPENAI_API_KEY not set. Recommendations will use the fixed fallback sets."
            )
        if not self.openweather_api_key:
            logger.info(
                "OPENWEATHER_API_KEY not set. Weather context will use defaults."
            )
        if not (
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        ):
            logger.info(
                "Twilio credentials missing or incomplete. Outbound messages will not be delivered."
            )


# single exporter
settings = Settings()
