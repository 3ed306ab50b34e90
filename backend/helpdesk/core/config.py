"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "Helpdesk Automation"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/helpdesk"
    LOG_LEVEL: str = "INFO"

    FRONTEND_BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"

    # shared secret for the automation/SLA endpoints (called by the ticket API and the scheduler)
    AUTOMATION_SECRET: str = ""
    AUTOMATION_DEFAULT_TIMEZONE: str = "UTC"
    AUTOMATION_TIME_BASED_INTERVAL_MINUTES: int = 60 * 24

    SLA_MONITOR_BATCH_LIMIT: int = 200

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_TLS: bool = True

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
