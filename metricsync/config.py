"""Metricsync: Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_api_version: str = "v23.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_request_timeout: float = 30.0

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    sync_hour: int = 3  # Daily batch sync at 3 AM UTC
    cron_secret_key: Optional[str] = None

    # ── Sync Pipeline ──
    insights_batch_size: int = 10  # Graph API hard limit on ids per insights call
    store_chunk_size: int = 1000
    default_date_preset: str = "last_30_days"
    fetch_max_attempts: int = 1  # 1 = single attempt, zero-fill on failure
    fetch_retry_base_delay: float = 2.0

    @property
    def meta_graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/metricsync.db"
        return "sqlite:///./metricsync.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
