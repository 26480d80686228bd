from datetime import timedelta

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://tradeguard:tradeguard_dev@db:5432/tradeguard"

    # Redis (Celery broker + scheduler lock)
    REDIS_URL: str = "redis://redis:6379/0"

    # Order service
    ORDER_SERVICE_URL: str = "http://orders:8000/api/v1"
    ORDER_SERVICE_TIMEOUT_SECONDS: float = 10.0

    # Notification webhook (empty = log only)
    NOTIFIER_WEBHOOK_URL: str = ""
    NOTIFIER_TIMEOUT_SECONDS: float = 10.0

    # Dispute policy
    NEGOTIATION_WINDOW_HOURS: int = 72
    ARBITRATION_WINDOW_HOURS: int = 168

    # Scheduler
    EXPIRY_SCAN_INTERVAL_MINUTES: int = 5
    SCHEDULER_LOCK_TIMEOUT_SECONDS: int = 30
    EVENT_DISPATCH_BATCH_SIZE: int = 100
    EVENT_MAX_ATTEMPTS: int = 8
    EVENT_RETRY_BASE_SECONDS: int = 60
    EVENT_RETRY_MAX_SECONDS: int = 3600

    # App
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def negotiation_window(self) -> timedelta:
        return timedelta(hours=self.NEGOTIATION_WINDOW_HOURS)

    @property
    def arbitration_window(self) -> timedelta:
        return timedelta(hours=self.ARBITRATION_WINDOW_HOURS)


settings = Settings()
