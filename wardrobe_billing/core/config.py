"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated origins. Empty = default list in main.py.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # CALLER IDENTITY (JWT issued by the auth provider)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = "authenticated"

    # ===========================================
    # MERCADOPAGO
    # ===========================================
    mercadopago_access_token: str  # Required, no default
    mercadopago_api_base: str = "https://api.mercadopago.com"
    mercadopago_timeout: float = 10.0
    # Shared token expected as ?token= on the webhook URL. Empty = not checked.
    mercadopago_webhook_token: str = ""
    # Secret for the x-signature HMAC. Empty = not checked.
    mercadopago_webhook_secret: str = ""
    webhook_signature_tolerance_seconds: int = 300

    # ===========================================
    # PLANS & CREDITS
    # ===========================================
    billing_provider: str = "mercadopago"
    billing_currency: str = "ARS"
    # Monthly price per paid tier, in billing_currency.
    plan_prices: str = '{"pro": 2999, "premium": 4999}'
    # Monthly AI generations per tier; -1 = unlimited.
    generation_limits: str = '{"free": 200, "pro": 300, "premium": 400}'

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("plan_prices", "generation_limits")
    @classmethod
    def validate_json_mapping(cls, v: str) -> str:
        """Tier tables are JSON objects of tier -> number."""
        try:
            parsed = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"must be a JSON object: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("must be a JSON object")
        return v

    @field_validator("billing_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("jwt_secret_key must be at least 16 characters")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
