"""Trafficlens — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Google OAuth ──
    google_client_id: str = ""
    google_client_secret: str = ""
    google_token_url: str = "https://oauth2.googleapis.com/token"

    # ── Google Analytics Data API ──
    ga_data_base_url: str = "https://analyticsdata.googleapis.com/v1beta"
    request_timeout: float = 30.0
    report_page_size: int = 10000

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    refresh_hour: int = 3  # Daily refresh at 3 AM UTC
    cors_origins: Optional[str] = None

    # ── Ingestion ──
    default_fetch_days: int = 30
    stale_after_hours: int = 24
    unrecognized_date_policy: str = "reject"  # reject | today

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/trafficlens.db"
        return "sqlite:///./trafficlens.db"

    @property
    def allowed_origins(self) -> list[str]:
        if not self.cors_origins:
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
