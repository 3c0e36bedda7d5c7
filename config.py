"""
Configuration management for MedRemind
"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "MedRemind"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./medremind.db"
    DATABASE_ECHO: bool = False

    # Job queue (APScheduler)
    SCHEDULER_ENABLED: bool = True
    JOBSTORE_URL: Optional[str] = None  # falls back to DATABASE_URL
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_BASE_SECONDS: int = 60
    JOB_MISFIRE_GRACE_SECONDS: int = 300

    # Reminder pipeline
    MISSED_DOSE_GRACE_MINUTES: int = 30
    PRIME_HORIZON_HOURS: int = 48
    USER_SCHEDULE_HORIZON_HOURS: int = 24 * 30
    REFRESH_INTERVAL_HOURS: int = 24
    SAFETY_RESCAN_MINUTES: int = 60
    DEFAULT_TIMEZONE: str = "UTC"

    # Notifications
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    SMTP_SERVER: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    FROM_EMAIL: Optional[str] = None
    FCM_PROJECT_ID: Optional[str] = None
    FCM_CREDENTIALS_JSON: Optional[str] = None  # inline JSON or a file path

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


class ReminderConfig:
    """Fixed naming and bounds for the reminder pipeline"""

    # Job ids
    FIRE_JOB_ID: str = "reminder:{occurrence_id}"
    MISSED_CHECK_JOB_ID: str = "reminder:{occurrence_id}:missed-check"
    REFRESH_JOB_ID: str = "maintenance:refresh"
    RESCAN_JOB_ID: str = "maintenance:safety-rescan"

    # Job payload kinds
    KIND_FIRE: str = "fire"
    KIND_MISSED_CHECK: str = "missed_check"

    # Bounds
    MAX_SNOOZE_MINUTES: int = 24 * 60
    MAX_MEDICINES_PER_REMINDER: int = 20


settings = get_settings()
reminder_config = ReminderConfig()
