from functools import lru_cache
import json
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors_origins(value: str) -> list[str]:
    if not value:
        return []

    parsed: list[str]
    raw = value.strip()
    if raw.startswith("["):
        try:
            items = json.loads(raw)
            parsed = [str(item).strip().rstrip("/") for item in items if str(item).strip()]
        except (TypeError, ValueError):
            parsed = []
    else:
        parsed = [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    # Preserve order and remove duplicates.
    return list(dict.fromkeys(parsed))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "Lifetime Tech Store"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Security
    secret_key: str
    access_token_expire_minutes: int = 60

    # Admin console (single operator account)
    admin_username: str = "admin"
    admin_password: Optional[str] = None

    # Database
    database_url: str
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 15
    db_pool_recycle: int = 1200
    db_pool_pre_ping: bool = True

    # M-Pesa Daraja
    mpesa_environment: str = "sandbox"  # sandbox|production
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_business_shortcode: str = "174379"
    mpesa_passkey: str = ""
    mpesa_callback_url: str = "https://example.com/api/v1/mpesa/callback"
    # Shared secret appended to the callback URL as ?token=...; Daraja does not sign callbacks.
    mpesa_callback_token: Optional[str] = None
    mpesa_transaction_type: str = "CustomerPayBillOnline"
    mpesa_timeout_seconds: int = 15
    mpesa_test_mode: bool = False
    mpesa_min_amount: int = 1
    mpesa_max_amount: int = 70000

    # Catalog
    catalog_cache_ttl_seconds: int = 300

    # Storefront origin, always allowed by CORS
    frontend_base_url: str = "http://localhost:5173"

    # Email (order notifications)
    email_provider: str = "console"  # console|resend|smtp|brevo
    email_from: str = "Lifetime Technology <onboarding@resend.dev>"
    order_notification_email: str = "orders@lifetime.local"

    # Resend
    resend_api_key: Optional[str] = None

    # Brevo
    brevo_api_key: Optional[str] = None

    # SMTP
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    auto_create_tables: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
