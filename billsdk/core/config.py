import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

from billsdk.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRET = "billsdk-development-secret-change-in-production"
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BILLSDK_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    BASE_PATH: str = "/api/billing"
    DATABASE_DSN: str = "sqlite://"

    # Security
    SECRET: str = DEFAULT_SECRET
    CSRF_COOKIE_NAME: str = "__billsdk_csrf"
    CSRF_HEADER_NAME: str = "x-billsdk-csrf"
    TRUSTED_ORIGINS: str = ""  # comma separated, supports * and ** wildcards

    # Billing
    DEFAULT_CURRENCY: str = "usd"
    GRACE_PERIOD_DAYS: int = 3

    # Manual payment adapter
    manual_webhook_secret: str = ""
    manual_checkout_url: str = "https://checkout.example.com/session"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def trusted_origins(self) -> list[str]:
        return [o.strip() for o in self.TRUSTED_ORIGINS.split(",") if o.strip()]


def validate_secret(config: Settings) -> None:
    """Refuse the development secret in production and warn on short secrets."""
    if config.SECRET == DEFAULT_SECRET:
        if config.is_production:
            raise ConfigurationError(
                "BILLSDK_SECRET must be set in production. "
                "Generate one with: openssl rand -base64 32"
            )
        logger.warning("Using the default development secret; set BILLSDK_SECRET before deploying")
    elif len(config.SECRET) < MIN_SECRET_LENGTH:
        logger.warning(
            "BILLSDK_SECRET is shorter than %d characters; use a longer random value",
            MIN_SECRET_LENGTH,
        )


settings = Settings()
