"""Runtime settings for the grocery engine.

Values come from environment variables prefixed with ``GROCERY_`` or from a
``.env`` file in the working directory. ``PROTEAN_ENV`` still selects the
environment overlay for the domain itself.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_prefix="GROCERY_", env_file=".env", extra="ignore")

    # Pricing
    currency: str = "TZS"
    delivery_fee: float = 3000.0
    free_delivery_threshold: float = 50000.0
    # Shelf prices are VAT-inclusive
    tax_rate: float = 0.0
    delivery_time_windows: list[str] = ["09:00-12:00", "12:00-15:00", "15:00-18:00"]

    # Catalogue: JSON list of {"product_id", "name", "unit_price"}
    catalog_file: str | None = None

    # Payments
    payment_timeout_minutes: int = 15
    gateway: str = "fake"
    gateway_timeout_seconds: float = 30.0
    gateway_retry_attempts: int = 3
    gateway_retry_wait_seconds: float = 1.0
    gateway_retry_max_wait_seconds: float = 10.0
    webhook_secret: str = "local-webhook-secret"

    # ClickPesa
    clickpesa_base_url: str = "https://api.clickpesa.com"
    clickpesa_api_key: str = ""
    clickpesa_merchant_id: str = ""
    clickpesa_callback_url: str = ""

    # Concurrency and reconciliation
    lock_timeout_seconds: float = 10.0
    sweep_interval_seconds: int = 60
    receipt_max_attempts: int = 5

    # Logging: level defaults by PROTEAN_ENV; files are written only when log_dir is set
    log_level: str | None = None
    log_dir: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
