import sys
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Defines the application's configuration settings.

    Pydantic will automatically read from the environment or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    API_BASE_URL: str = "http://localhost:8001/mobile-api"

    GOOGLE_CALENDAR_API_URL: str = "https://www.googleapis.com/calendar/v3"

    REQUEST_TIMEOUT_SECONDS: float = 10.0

    CALENDAR_CACHE_TTL_SECONDS: int = 300

    SCHOOL_CONFIG_TTL_SECONDS: int = 86400

    DEFAULT_RANGE_DAYS: int = 30

    DATABASE_URL: str = "sqlite+aiosqlite:///./calendar.db"

    JWT_SECRET_KEY: str

    ENCRYPTION_KEY: str

    GOOGLE_CLIENT_ID: str = ""

    GOOGLE_CLIENT_SECRET: str = ""

    APP_BASE_URL: str = "http://localhost:8000"

    LOGGING_LEVEL: str = "INFO"

    SECURITY_LOG_FILE: Optional[str] = None


try:
    settings = Settings()

except Exception as e:
    print(f"FATAL: Failed to load application settings: {e}", file=sys.stderr)
    sys.exit("Failed to load configuration. Exiting.")
