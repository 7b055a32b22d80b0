"""Service configuration from environment variables."""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "postgresql+asyncpg://billing:billing@db:5432/billing"
    AUTO_CREATE_TABLES: bool = True

    # Card / wallet processor (PayPal Orders v2)
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_MODE: str = "sandbox"          # "live" switches to the production API
    PAYPAL_TIMEOUT_SECONDS: float = 15.0

    # On-chain claims
    ONCHAIN_MOCK_VERIFICATION: bool = False

    # Receipt asset storage
    STORAGE_URL: str = "http://storage:5000"
    STORAGE_SERVICE_KEY: str = ""
    STORAGE_BUCKET: str = "payment_receipts"
    STORAGE_TIMEOUT_SECONDS: float = 10.0
    RECEIPT_MAX_BYTES: int = 10 * 1024 * 1024
    RECEIPT_URL_TTL_SECONDS: int = 3600

    # Manual review
    REJECT_COOLDOWN_HOURS: int = 24

    # Optional notification / audit webhook
    NOTIFY_WEBHOOK_URL: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @model_validator(mode="after")
    def _no_mock_verification_in_production(self):
        if self.ONCHAIN_MOCK_VERIFICATION and self.is_production:
            raise ValueError("ONCHAIN_MOCK_VERIFICATION cannot be enabled in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def paypal_api_base(self) -> str:
        if self.PAYPAL_MODE == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
