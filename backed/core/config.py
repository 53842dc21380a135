"""Application configuration with environment variables."""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str = "sqlite:///./backed.db"

    # Identity provider token verification (HS256 shared secret)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_AUDIENCE: str = ""  # Empty disables audience verification

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Generative text service (empty key = AI not configured)
    AI_API_KEY: str = ""
    AI_MODEL: str = ""
    AI_TIMEOUT_SECONDS: float = 30.0
    AI_MAX_RETRIES: int = 2  # Summary / chat
    AI_SCORING_MAX_RETRIES: int = 1  # Relevance scoring is not critical
    AI_RETRY_BASE_DELAY: float = 1.0
    AI_SCORING_RETRY_DELAY: float = 0.5

    # Money
    CURRENCY: str = "GHS"
    CURRENCY_SYMBOL: str = "GH₵"

    # Payments (simulated gateway in demo mode)
    PAYMENTS_DEMO_MODE: bool = True
    PAYMENT_PROVIDER: str = "paystack"
    PAYMENT_GATEWAY_DELAY_SECONDS: float = 2.5
    PAYMENT_GATEWAY_MAX_RETRIES: int = 2  # Timeouts only, same reference
    PAYMENT_GATEWAY_RETRY_DELAY: float = 1.0
    DONATION_WRITE_RETRIES: int = 2
    MAX_DONATION_AMOUNT: Decimal = Decimal("10000000")

    # Rate limiting (per client address, in-memory storage)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DONATIONS: str = "10/minute"
    RATE_LIMIT_CHAT: str = "20/minute"

    # Feed
    FEED_CANDIDATE_LIMIT: int = 30
    FEED_PAGE_SIZE: int = 20

    # Chat assistant
    CHAT_CONTEXT_PROJECT_LIMIT: int = 10
    CHAT_SCORING_JITTER: int = 5

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def ai_configured(self) -> bool:
        return bool(self.AI_API_KEY.strip())


settings = Settings()
