from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import (
    CounterProvider,
    Environment,
    QuotaEnforcementMode,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "billing-engine"
    api_version: str = "1.0.0"
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    database_url_override: Optional[str] = None  # Full URL, e.g. sqlite+aiosqlite://
    db_use_nullpool: bool = (
        False  # True for cron sweeps (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct async database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis (shared counter store)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # OpenTelemetry
    otel_service_name: str = "billing-engine"
    otel_service_version: str = "1.0.0"

    # Axiom (exporters are only attached when a token is present)
    axiom_token: Optional[str] = None
    axiom_dataset: Optional[str] = None

    # Billing - Stripe (payments)
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    # Stripe price IDs per plan and billing cycle
    stripe_price_id_pro_monthly: str = ""
    stripe_price_id_pro_yearly: str = ""
    stripe_price_id_business_monthly: str = ""
    stripe_price_id_business_yearly: str = ""
    stripe_price_id_enterprise_monthly: str = ""
    stripe_price_id_enterprise_yearly: str = ""

    # Billing engine
    billing_currency: str = "usd"
    checkout_trial_days: int = 7
    payment_processor_timeout_seconds: float = 10.0
    quota_enforcement_mode: QuotaEnforcementMode = QuotaEnforcementMode.SOFT
    counter_provider: CounterProvider = CounterProvider.REDIS
    usage_retention_days: int = 400
    expired_subscription_grace_hours: int = 24

    @property
    def cors_allowed_origins(self) -> list[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:3001",
            ]
        return []


settings = Settings()
