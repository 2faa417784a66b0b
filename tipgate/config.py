"""tipgate configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings.

    Secrets default to empty strings so an unconfigured processor fails
    closed instead of accepting unsigned deliveries.
    """

    environment: str = "development"
    version: str = "1.0.0"

    # Processor secrets
    bold_secret_key: str = ""
    mercadopago_webhook_secret: str = ""
    stripe_webhook_secret: str = ""
    paypal_webhook_id: str = ""
    # cert id -> PEM certificate or public key
    paypal_certificates: dict[str, str] = {}

    # Authentication windows
    max_transmission_age_seconds: int = 300

    # Replay guard
    idempotency_retention_seconds: int = 1800
    idempotency_sweep_interval_seconds: int = 600

    # Admission control
    rate_limit: str = "50/minute"
    trusted_rate_limit: str = "100/minute"
    trusted_ip_prefixes: list[str] = ["181.78.23.", "190.90.8."]
    trusted_proxies: str = ""
    health_paths: list[str] = ["/webhooks/health", "/health"]

    # Alerting
    slack_webhook_url: str = ""
    payments_slack_webhook_url: str = ""
    alert_workers: int = 2

    model_config = {"env_prefix": "TIPGATE_", "env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
