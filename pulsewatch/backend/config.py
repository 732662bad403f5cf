"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    SAMPLE_CAPACITY=2000
    WHITELIST_IPS=127.0.0.1,10.0.0.5
    WEBHOOK_URL=https://hooks.example.com/pulsewatch
    ALERT_EMAIL_TO=ops@example.com
"""

from __future__ import annotations

import json
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Sample store / aggregation
    SAMPLE_CAPACITY: int = 1_000
    TOP_ENDPOINTS_LIMIT: int = 10
    MEMORY_TREND_POINTS: int = 20

    # Alerts
    ALERT_HISTORY_LIMIT: int = 1_000

    # Threat tracking
    THREAT_EVENT_HISTORY_LIMIT: int = 50
    THREAT_WINDOW_SECONDS: int = 86_400
    THREAT_PROFILE_RETENTION_SECONDS: int = 7 * 86_400
    THREAT_AUDIT_BUFFER_SIZE: int = 5_000

    # Whitelist — tracked, but never auto-blocked
    WHITELIST_IPS: Annotated[list[str], NoDecode] = []

    # Request inspection
    BRUTE_FORCE_THRESHOLD: int = 5
    BRUTE_FORCE_WINDOW_SECONDS: int = 900

    # Periodic work
    MONITOR_INTERVAL_SECONDS: float = 30.0
    ALERT_INTERVAL_SECONDS: float = 60.0
    PERSIST_INTERVAL_SECONDS: float = 30.0
    SNAPSHOT_HISTORY_SECONDS: int = 86_400

    # Notifications
    NOTIFICATION_QUEUE_SIZE: int = 500
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    ALERT_EMAIL_FROM: str = "pulsewatch@localhost"
    ALERT_EMAIL_TO: Annotated[list[str], NoDecode] = []
    WEBHOOK_URL: str = ""
    WEBHOOK_TIMEOUT_SECONDS: float = 5.0

    # Storage
    DB_PATH: str = "data/pulsewatch.db"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("WHITELIST_IPS", "ALERT_EMAIL_TO", mode="before")
    @classmethod
    def parse_list(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except ValueError:
                    pass
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


settings = Settings()
