from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "covenant"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/covenant.db"
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Paging
    PAGE_LIMIT_CAP: int = 100

    # Scheduler
    SCHEDULER_BATCH_LIMIT: int = 500
    SCHEDULER_TICK_MINUTES: int = 5  # must divide 60
    SCHEDULER_TICK_DEADLINE_SECONDS: float = 240.0

    # Claims
    CLAIM_WAIT_SECONDS: float = 0.5
    CLAIM_TTL_SECONDS: int = 900  # claims older than this are considered abandoned

    # Fulfillment webhook
    FULFILLMENT_WEBHOOK_URL: str = ""  # empty disables webhook delivery
    webhook_secret: str = "whsec_default_secret"

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.FULFILLMENT_WEBHOOK_URL)


settings = Settings()
