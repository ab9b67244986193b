"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "PitchBook"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://pitchbook:pitchbook@db:5432/pitchbook"
    database_echo: bool = False

    # Redis (Celery broker for the lifecycle sweeps)
    redis_url: str = "redis://redis:6379/0"

    # Auth
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "noreply@pitchbook.app"
    notifications_enabled: bool = False

    # Scheduling. Slot hours are wall-clock hours in this timezone.
    timezone: str = "Africa/Cairo"
    # Period name -> [first hour, end hour) ; override with PB_SLOT_PERIODS='{"all": [0, 24], ...}'
    slot_periods: dict[str, tuple[int, int]] = {
        "all": (0, 24),
        "night": (0, 6),
        "morning": (6, 12),
        "afternoon": (12, 18),
        "evening": (18, 24),
    }

    # Cancellation policy
    full_refund_hours: int = 48
    credit_only_hours: int = 24
    compensation_ttl_days: int = 14

    # Unconfirmed bookings release their slot after this long
    pending_expiry_minutes: int = 30

    model_config = {"env_prefix": "PB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
