from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Tripo Booking API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    # Shared secret of the identity provider; tokens are verified, never issued here.
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Money (whole currency units)
    CURRENCY: str = "INR"
    SERVICE_FEE_PERCENT: float = 5.0
    PLATFORM_FEE_PERCENT: float = 10.0
    PAYOUT_FEE_PERCENT: float = 2.0
    PAYOUT_MIN_FEE: int = 5
    MINIMUM_PAYOUT: int = 100

    # Cancellation refund tiers
    REFUND_FULL_HOURS: float = 24
    REFUND_PARTIAL_HOURS: float = 2
    REFUND_PARTIAL_PERCENT: int = 50

    MAX_SEATS_PER_BOOKING: int = 8

    # Optimistic transaction retry
    TX_MAX_ATTEMPTS: int = 3
    TX_BACKOFF_SECONDS: float = 0.05

    # Payment gateway (HTTP Signature / REST)
    GATEWAY_HOST: str = "apitest.cybersource.com"
    GATEWAY_MERCHANT_ID: str = ""
    GATEWAY_KEY_ID: str = ""
    GATEWAY_SECRET_KEY_B64: str = ""
    GATEWAY_SANDBOX: bool = False  # If True, skip real gateway calls and return mock success (for dev)
    GATEWAY_WEBHOOK_VERIFY: bool = False
    GATEWAY_WEBHOOK_PATH: str = ""  # If set, use this path for webhook signature verification

    # Push notifications
    PUSH_GATEWAY_URL: str = ""
    PUSH_GATEWAY_TOKEN: str = ""
    NOTIFY_MAX_ATTEMPTS: int = 5


settings = Settings()
