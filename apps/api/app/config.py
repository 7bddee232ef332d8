from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "storefront-jwt-secret"
ALLOWED_APP_MODES = {"demo", "pilot", "production"}
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    app_name: str = "Storefront Order Service"
    app_mode: str = Field(default="demo", validation_alias="APP_MODE")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+pysqlite:///./test.db",
        validation_alias="STOREFRONT_DATABASE_URL",
    )
    auto_create_schema: bool = Field(default=True, validation_alias="AUTO_CREATE_SCHEMA")
    require_migrations: bool = Field(default=False, validation_alias="REQUIRE_MIGRATIONS")
    cors_allowed_origins: str = "http://localhost:3000"
    site_url: str = Field(default="http://localhost:3000", validation_alias="SITE_URL")

    jwt_secret: str = DEFAULT_JWT_SECRET
    testing: bool = Field(default=False, validation_alias="STOREFRONT_TESTING")
    bootstrap_admin_subjects: str = Field(default="", validation_alias="BOOTSTRAP_ADMIN_SUBJECTS")

    mp_access_token: str = Field(default="", validation_alias="MP_ACCESS_TOKEN")
    mp_api_base_url: str = Field(
        default="https://api.mercadopago.com",
        validation_alias="MP_API_BASE_URL",
    )
    mp_timeout_s: float = Field(default=7.0, validation_alias="MP_TIMEOUT_S")
    mp_max_retries: int = Field(default=1, validation_alias="MP_MAX_RETRIES")
    mp_backoff_s: float = Field(default=0.2, validation_alias="MP_BACKOFF_S")

    payment_window_s: int = Field(default=24 * 60 * 60, validation_alias="PAYMENT_WINDOW_S")
    expiration_cancel_reason: str = "Pagamento não concluído dentro do prazo"
    expiration_trigger_token: str = Field(default="", validation_alias="EXPIRATION_TRIGGER_TOKEN")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    @field_validator("app_mode")
    @classmethod
    def validate_app_mode(cls, value: str) -> str:
        mode = value.lower().strip()
        if mode not in ALLOWED_APP_MODES:
            allowed = ", ".join(sorted(ALLOWED_APP_MODES))
            raise ValueError(f"APP_MODE must be one of: {allowed}")
        return mode

    @field_validator("mp_timeout_s", "payment_window_s")
    @classmethod
    def validate_positive(cls, value: float, info) -> float:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be greater than 0")
        return value

    @field_validator("mp_max_retries")
    @classmethod
    def validate_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("mp_max_retries must be >= 0")
        return value

    @field_validator("mp_backoff_s")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("mp_backoff_s must be >= 0")
        return value

    @field_validator("mp_api_base_url", "site_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")


settings = Settings()


def is_production_mode() -> bool:
    return settings.app_mode == "production"


def allowed_origins() -> list[str]:
    return [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]


def bootstrap_admin_subjects() -> list[str]:
    return [value.strip() for value in settings.bootstrap_admin_subjects.split(",") if value.strip()]


def webhook_notification_url() -> str:
    return f"{settings.site_url}/api/v1/payments/webhook"


def checkout_back_urls() -> dict[str, str]:
    return {
        "success": f"{settings.site_url}/checkout/sucesso",
        "pending": f"{settings.site_url}/checkout/pending",
        "failure": f"{settings.site_url}/checkout/erro",
    }


def ensure_secure_runtime_settings() -> None:
    """Fail fast when production-like runtime uses insecure defaults."""
    if not settings.testing and settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise RuntimeError(
            "JWT_SECRET must be set to a non-default value when STOREFRONT_TESTING is false"
        )
    if not settings.testing and len(settings.jwt_secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            "JWT_SECRET must be at least "
            f"{MIN_SECRET_LENGTH} characters when STOREFRONT_TESTING is false"
        )
    if not settings.testing and _is_sqlite_url(settings.database_url):
        raise RuntimeError(
            "STOREFRONT_DATABASE_URL must use postgres when STOREFRONT_TESTING is false"
        )
    if is_production_mode() and not settings.mp_access_token.strip():
        raise RuntimeError("MP_ACCESS_TOKEN must be set in APP_MODE=production")


def _is_sqlite_url(database_url: str) -> bool:
    value = database_url.strip().lower()
    return value.startswith("sqlite")
