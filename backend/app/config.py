"""Application configuration and environment variables"""
from pydantic_settings import BaseSettings
from typing import List, Optional
import json
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""

    # OpenAI Configuration (free-text response interpretation)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TIMEOUT_SECONDS: float = 30.0

    # Push Configuration (Expo push service)
    EXPO_PUSH_API_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_REQUEST_TIMEOUT_SECONDS: float = 10.0
    PUSH_MAX_RETRIES: int = 2

    # Nudge Scheduler Configuration
    # Leaving the token unset lets anyone call the scheduler endpoints.
    # Fine for local development, must be set in production.
    NUDGE_SCHEDULER_TOKEN: Optional[str] = None
    NUDGE_SCHEDULER_ENABLED: bool = True
    NUDGE_CHECK_INTERVAL_MINUTES: int = 15
    NUDGE_BATCH_LIMIT: int = 100
    NUDGE_SEND_LOCK_TTL_MS: int = 5 * 60 * 1000
    NUDGE_DAILY_NOTIFICATION_LIMIT: int = 3
    NUDGE_QUIET_HOURS_START: int = 21  # local hour, inclusive
    NUDGE_QUIET_HOURS_END: int = 8  # local hour, exclusive
    DEFAULT_USER_TIMEZONE: str = "America/Chicago"
    FOLLOW_UP_LOCAL_HOUR: int = 10

    # CORS Configuration - can be set as JSON array string in env var
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8081"]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Parse CORS_ORIGINS from environment variable if set (for production deployments)
        cors_env = os.getenv("CORS_ORIGINS")
        if cors_env:
            cors_env = cors_env.strip()
            if cors_env.startswith("["):
                try:
                    parsed = json.loads(cors_env)
                    if isinstance(parsed, list):
                        self.CORS_ORIGINS = parsed
                except (json.JSONDecodeError, ValueError):
                    pass  # Fall back to pydantic's parsed value
            elif "," in cors_env:
                self.CORS_ORIGINS = [origin.strip() for origin in cors_env.split(",") if origin.strip()]

    # Application Configuration
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
